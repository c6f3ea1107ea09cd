"""
Zephyr runtime - tree-walking evaluator and its supporting pieces.

This module provides:
- Interpreter: Evaluates parsed programs
- Value: Runtime values with shared array/object storage and enum tags
- Scope: Lexical frames with const bindings, pure boundaries and exports
- NativeRegistry: The injected catalog of native primitives
- ModuleLoader: Import resolution and the module cache
"""

from .values import (
    Value,
    ValueKind,
    ArrayCell,
    ObjectCell,
    ReferenceCell,
    EnumTag,
    VariantTag,
    Closure,
    null_val,
    bool_val,
    number_val,
    string_val,
    array_val,
    object_val,
    error_value,
    from_python,
    to_python,
    values_equal,
    shallow_copy,
    deep_copy,
    to_display,
    to_repr,
)

from .signals import (
    ControlSignal,
    ReturnSignal,
    BreakSignal,
    ContinueSignal,
    ThrowSignal,
)

from .scope import Scope

from .natives import (
    NativeFunction,
    NativeRegistry,
    EventEmitter,
    NATIVE_NAMESPACE,
)

from .modules import (
    ModuleLoader,
    ModuleRecord,
)

from .interpreter import (
    Interpreter,
    ExecutionResult,
    execute,
    run_source,
    run_file,
)

__all__ = [
    # Values
    'Value',
    'ValueKind',
    'ArrayCell',
    'ObjectCell',
    'ReferenceCell',
    'EnumTag',
    'VariantTag',
    'Closure',
    'null_val',
    'bool_val',
    'number_val',
    'string_val',
    'array_val',
    'object_val',
    'error_value',
    'from_python',
    'to_python',
    'values_equal',
    'shallow_copy',
    'deep_copy',
    'to_display',
    'to_repr',

    # Signals
    'ControlSignal',
    'ReturnSignal',
    'BreakSignal',
    'ContinueSignal',
    'ThrowSignal',

    # Scope
    'Scope',

    # Natives
    'NativeFunction',
    'NativeRegistry',
    'EventEmitter',
    'NATIVE_NAMESPACE',

    # Modules
    'ModuleLoader',
    'ModuleRecord',

    # Interpreter
    'Interpreter',
    'ExecutionResult',
    'execute',
    'run_source',
    'run_file',
]
