"""Native function modules bundled with the interpreter."""
