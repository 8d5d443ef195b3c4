from typing import List, Optional

import pytest

from interpreter import Context, Interpreter, Register, ScriptResult


class DictLoader:
    def __init__(self, files):
        self.files = dict(files)

    def load(self, name: str) -> str:
        from interpreter import LoadError, LoadErrorKind

        if name not in self.files:
            raise LoadError(f"{name} missing", kind=LoadErrorKind.NOT_FOUND, name=name)
        return self.files[name]


@pytest.fixture
def run():
    def _run(code: str, context: Optional[Context] = None, register: Optional[Register] = None) -> List[ScriptResult]:
        interpreter = Interpreter(register if register is not None else Register(), context or Context())
        return list(interpreter.execute(code))

    return _run


@pytest.fixture
def last_value(run):
    """Run code and return the value of its final statement, failing on any error."""

    def _last(code: str, context: Optional[Context] = None):
        results = run(code, context)
        errors = [r.error for r in results if r.error is not None]
        assert not errors, errors
        return results[-1].value

    return _last
