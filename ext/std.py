"""Core value functions: output, conversion and array helpers."""

from __future__ import annotations

from typing import List

from extensions import ExtensionAPI, FunctionError, FunctionErrorKind


NASL_EXTENSION_NAME = "std"
NASL_EXTENSION_API_VERSION = 1

_TYPE_NAMES = {
    "NULL": "undef",
    "INT": "int",
    "STR": "string",
    "BOOL": "bool",
    "ARRAY": "array",
    "DICT": "array",
}


def nasl_register(ext: ExtensionAPI) -> None:
    from interpreter import (
        TYPE_ARRAY,
        TYPE_BOOL,
        TYPE_DICT,
        TYPE_INT,
        TYPE_NULL,
        TYPE_STR,
        Value,
        copy_value,
        null,
        to_display,
    )

    ext.metadata(name=NASL_EXTENSION_NAME, version="1.0.0")

    def _first(register, function: str):
        args = register.positional()
        if not args:
            raise FunctionError(FunctionErrorKind.MISSING_ARGUMENT, f"{function} expects one argument")
        return args[0]

    def _container(register, function: str):
        value = _first(register, function)
        if value.type not in (TYPE_ARRAY, TYPE_DICT):
            raise FunctionError(
                FunctionErrorKind.WRONG_ARGUMENT_TYPE, f"{function} expects an array but got {value.type}"
            )
        return value

    @ext.function("display")
    def display(register, context):
        context.logger.info("%s", "".join(to_display(arg) for arg in register.positional()))
        return null()

    @ext.function("string")
    def string(register, context):
        return Value(TYPE_STR, "".join(to_display(arg) for arg in register.positional()))

    @ext.function("strlen")
    def strlen(register, context):
        value = _first(register, "strlen")
        if value.type == TYPE_NULL:
            return Value(TYPE_INT, 0)
        if value.type != TYPE_STR:
            raise FunctionError(FunctionErrorKind.WRONG_ARGUMENT_TYPE, f"strlen expects a string but got {value.type}")
        return Value(TYPE_INT, len(value.value))

    @ext.function("typeof")
    def typeof(register, context):
        return Value(TYPE_STR, _TYPE_NAMES[_first(register, "typeof").type])

    @ext.function("isnull")
    def isnull(register, context):
        args = register.positional()
        return Value(TYPE_BOOL, not args or args[0].type == TYPE_NULL)

    @ext.function("max_index")
    def max_index(register, context):
        return Value(TYPE_INT, len(_container(register, "max_index").value))

    @ext.function("make_list")
    def make_list(register, context):
        # Array arguments are flattened one level.
        items: List = []
        for arg in register.positional():
            if arg.type == TYPE_ARRAY:
                items.extend(copy_value(item) for item in arg.value)
            elif arg.type == TYPE_DICT:
                items.extend(copy_value(item) for item in arg.value.values())
            elif arg.type != TYPE_NULL:
                items.append(arg)
        return Value(TYPE_ARRAY, items)

    @ext.function("make_array")
    def make_array(register, context):
        args = register.positional()
        if len(args) % 2:
            raise FunctionError(FunctionErrorKind.INVALID_VALUE, "make_array expects key/value pairs")
        return Value(TYPE_DICT, {to_display(args[i]): copy_value(args[i + 1]) for i in range(0, len(args), 2)})

    @ext.function("keys")
    def keys(register, context):
        container = _container(register, "keys")
        if container.type == TYPE_ARRAY:
            return Value(TYPE_ARRAY, [Value(TYPE_INT, i) for i in range(len(container.value))])
        return Value(TYPE_ARRAY, [Value(TYPE_STR, key) for key in container.value])
