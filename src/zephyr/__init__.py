"""
Zephyr - an expression-oriented scripting language.

This package provides:
- Lexer: Tokenizes Zephyr source code
- Parser: Builds an AST from tokens
- Interpreter: Evaluates programs with closures, enums, pure functions,
  predicates, try/catch/finally and modules
- A small prelude written in Zephyr (Array, String, Math, Object, Result)

Usage:
    from zephyr import run_source, tokenize, parse

    tokens = tokenize('let x = 1 + 2;')
    program = parse(tokens)

    result = run_source('''
        enum Animal { Dog, Cat }
        let pet = Animal.Dog("Rex");
        match pet {
            is Animal.Dog { "woof" }
            else { "?" }
        }
    ''')
    if result.success:
        print(result.python_value)      # woof
    else:
        print(result.error_message)
"""

from .tokens import (
    Token,
    TokenType,
    SourceLocation,
    SourceSpan,
    KEYWORDS,
)

from .lexer import (
    Lexer,
    tokenize,
)

from .parser import (
    Parser,
    parse,
    parse_source,
)

from .ast import (
    AstNode,
    AstVisitor,
    Program,
    dump_ast,
)

from .errors import (
    ZephyrError,
    LexerError,
    ParserError,
    RuntimeFault,
    UncaughtThrow,
    Diagnostic,
)

from .config import (
    EngineConfig,
    ConfigError,
    load_config,
    find_config,
)

from .runtime import (
    Interpreter,
    ExecutionResult,
    execute,
    run_source,
    run_file,
    Value,
    ValueKind,
    NativeRegistry,
    ModuleLoader,
)

__version__ = "0.1.0"

__all__ = [
    # Tokens
    'Token',
    'TokenType',
    'SourceLocation',
    'SourceSpan',
    'KEYWORDS',

    # Lexer / parser
    'Lexer',
    'tokenize',
    'Parser',
    'parse',
    'parse_source',

    # AST
    'AstNode',
    'AstVisitor',
    'Program',
    'dump_ast',

    # Errors
    'ZephyrError',
    'LexerError',
    'ParserError',
    'RuntimeFault',
    'UncaughtThrow',
    'Diagnostic',

    # Config
    'EngineConfig',
    'ConfigError',
    'load_config',
    'find_config',

    # Runtime
    'Interpreter',
    'ExecutionResult',
    'execute',
    'run_source',
    'run_file',
    'Value',
    'ValueKind',
    'NativeRegistry',
    'ModuleLoader',
]
