"""
Tree-walking interpreter for Zephyr.

Evaluates AST nodes to produce Values. Every node, statements included,
evaluates to a Value; a block's value is the value of its last statement.
Non-local exits (return, break, continue, throw) unwind as control
signals, and engine faults unwind as RuntimeFault exceptions. try/catch
handles both the same way.
"""

import logging
import sys
import threading
from dataclasses import dataclass
from fractions import Fraction
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from .values import (
    Value, ValueKind, Closure, EnumTag, VariantTag, VARIANT_TAG, ENUM_BASE_TAG,
    null_val, bool_val, number_val, string_val, array_val, object_val, function_val,
    error_value, values_equal, iter_pairs, length_of, to_repr, to_python,
)
from .scope import Scope
from .signals import ReturnSignal, BreakSignal, ContinueSignal, ThrowSignal
from .natives import NativeRegistry, NATIVE_NAMESPACE
from .modules import ModuleLoader

from ..ast import (
    AstNode, Program, Block, Literal, Identifier, BinaryOp, LogicalOp, UnaryOp,
    UpdateExpr, Assignment, MemberAccess, IndexAccess, Call, ArrayLiteral,
    ObjectLiteral, RangeExpr, IfExpr, Ternary, WhileLoop, LoopExpr, ForIn,
    TryCatch, MatchExpr, FunctionDef, Statement, ExpressionStatement, VarDecl,
    ReturnStatement, BreakStatement, ContinueStatement, ThrowStatement, EnumDecl,
    ImportStatement, ExportStatement, walk,
)
from ..config import EngineConfig
from ..errors import (
    ZephyrError, LexerError, ParserError, RuntimeFault, UncaughtThrow, UNKNOWN_SPAN,
    ScriptTypeError, ScriptIndexError, DivisionByZeroError, ArityError,
    ArgumentTypeError, NoMatchError, ScopeViolationError, ResolutionError,
    ScriptValueError, NativeError, ScriptRecursionError,
)
from ..parser import parse_source
from ..tokens import TokenType, SourceSpan, ASSIGNMENT_OPERATORS, is_predicate_name


logger = logging.getLogger(__name__)

LIB_DIR = Path(__file__).resolve().parent.parent / "lib"

# Loaded in order; each file's exports become globals
PRELUDE_FILES = (
    "predicates.zr",
    "core.zr",
    "array.zr",
    "string.zr",
    "object.zr",
    "math.zr",
    "result.zr",
)

_OPERATOR_SYMBOLS = {
    TokenType.PLUS: "+",
    TokenType.MINUS: "-",
    TokenType.STAR: "*",
    TokenType.SLASH: "/",
    TokenType.PERCENT: "%",
    TokenType.DOUBLE_STAR: "**",
    TokenType.LT: "<",
    TokenType.GT: ">",
    TokenType.LE: "<=",
    TokenType.GE: ">=",
    TokenType.EQ: "==",
    TokenType.NE: "!=",
    TokenType.AND: "&&",
    TokenType.OR: "||",
}

# Parsed prelude programs, shared by every interpreter (the AST is immutable)
_prelude_programs: Dict[str, Program] = {}
_prelude_lock = threading.Lock()


@dataclass
class ExecutionResult:
    """Result of running a program."""
    success: bool
    value: Optional[Value] = None
    thrown: Optional[Value] = None
    error: Optional[ZephyrError] = None
    error_message: Optional[str] = None

    @property
    def python_value(self):
        """The program's value as plain Python data."""
        if self.value is None:
            return None
        return to_python(self.value)


class Interpreter:
    """
    Tree-walking interpreter for Zephyr.

    Evaluates AST nodes by dispatching on node type. The native catalog,
    module loader and configuration are injected; defaults are created
    when they are not given.
    """

    def __init__(self, natives: Optional[NativeRegistry] = None,
                 loader: Optional[ModuleLoader] = None,
                 config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.config.apply_logging()
        self.natives = natives or NativeRegistry(argv=self.config.argv)
        # Modules are evaluated against this interpreter's globals, so the
        # cache is per interpreter unless a loader is shared explicitly.
        if loader is None:
            loader = ModuleLoader(self.config.module_paths, self.config.module_extension)
        self.loader = loader

        self.globals = Scope(name="global", is_global=True)
        self.globals.define(NATIVE_NAMESPACE, self.natives.namespace(), constant=True)
        self.main_scope = Scope(parent=self.globals, name="main", is_global=True)

        self._local = threading.local()
        self._ensure_recursion_limit()

        self._dispatch: Dict[type, Callable[[AstNode, Scope], Value]] = {
            Literal: self._eval_literal,
            Identifier: self._eval_identifier,
            BinaryOp: self._eval_binary_op,
            LogicalOp: self._eval_logical_op,
            UnaryOp: self._eval_unary_op,
            UpdateExpr: self._eval_update,
            Assignment: self._eval_assignment,
            MemberAccess: self._eval_member_access,
            IndexAccess: self._eval_index_access,
            Call: self._eval_call,
            ArrayLiteral: self._eval_array_literal,
            ObjectLiteral: self._eval_object_literal,
            RangeExpr: self._eval_range,
            Block: self._eval_block,
            IfExpr: self._eval_if,
            Ternary: self._eval_ternary,
            WhileLoop: self._eval_while,
            LoopExpr: self._eval_loop,
            ForIn: self._eval_for,
            TryCatch: self._eval_try,
            MatchExpr: self._eval_match,
            FunctionDef: self._eval_function_def,
            ExpressionStatement: self._exec_expression_statement,
            VarDecl: self._exec_var_decl,
            ReturnStatement: self._exec_return,
            BreakStatement: self._exec_break,
            ContinueStatement: self._exec_continue,
            ThrowStatement: self._exec_throw,
            EnumDecl: self._exec_enum,
            ImportStatement: self._exec_import,
            ExportStatement: self._exec_export,
        }

        if self.config.load_prelude:
            self._load_prelude()

    # =========================================================================
    # Entry points
    # =========================================================================

    def run(self, program: Program, scope: Optional[Scope] = None,
            filename: Optional[str] = None) -> Value:
        """
        Execute a program and return the value of its last statement.

        Raises:
            UncaughtThrow: a script-level throw reached the top
            RuntimeFault: an engine fault was not caught by the script
        """
        scope = scope or self.main_scope
        filename = filename or program.filename
        if filename and (scope is self.main_scope or scope.filename is None):
            scope.filename = filename
        try:
            return self._exec_statements(program.statements, scope)
        except ReturnSignal as signal:
            return signal.value
        except ThrowSignal as signal:
            raise UncaughtThrow(
                signal.value, signal.span,
                f"uncaught throw: {to_repr(signal.value)}",
            )
        except (BreakSignal, ContinueSignal) as signal:
            keyword = "break" if isinstance(signal, BreakSignal) else "continue"
            raise RuntimeFault.create(f"'{keyword}' outside of a loop", signal.span)

    def eval_source(self, source: str, filename: Optional[str] = None) -> Value:
        """Parse and run source text in the main scope."""
        return self.run(parse_source(source, filename))

    def run_module(self, source: str, filename: str) -> Tuple[Program, Scope]:
        """Evaluate a module's source in a fresh top-level scope. Used by the module loader."""
        program = parse_source(source, filename)
        scope = Scope(parent=self.globals, name=f"module:{Path(filename).name}",
                      is_global=True, filename=filename)
        self.run(program, scope)
        return program, scope

    def evaluate(self, node: AstNode, scope: Scope) -> Value:
        """Evaluate a node to produce a Value."""
        handler = self._dispatch.get(type(node))
        if handler is None:
            raise RuntimeFault.create(f"unknown node type: {type(node).__name__}", node.span)
        return handler(node, scope)

    def call_function(self, func: Value, args: List[Value],
                      span: Optional[SourceSpan] = None) -> Value:
        """Call a script function, native function or enum variant constructor."""
        if func.kind == ValueKind.FUNCTION:
            return self._call_closure(func.data, args, span)

        if func.kind == ValueKind.NATIVE_FUNCTION:
            return self._call_native(func.data, args, span)

        if func.kind == ValueKind.NULL and func.variant is not None:
            if not args:
                return func
            if len(args) > 1:
                raise ArityError.create(
                    f"variant {func.variant} takes one payload argument, got {len(args)}", span
                )
            return Value.tagged(func.variant, args[0])

        raise ScriptTypeError.create(f"a {func.type_name} is not callable", span)

    # =========================================================================
    # Prelude
    # =========================================================================

    def _load_prelude(self) -> None:
        """Evaluate the bundled library files and publish their exports as globals."""
        for name in PRELUDE_FILES:
            program = _prelude_program(name)
            scope = Scope(parent=self.globals, name=f"prelude:{name}", is_global=True)
            self.run(program, scope)
            for export in scope.exported_names():
                self.globals.define(export, scope.get_export(export))
            logger.debug("prelude %s exported %s", name, ", ".join(scope.exported_names()))

    def _ensure_recursion_limit(self) -> None:
        needed = self.config.max_call_depth * 40 + 1000
        if sys.getrecursionlimit() < needed:
            sys.setrecursionlimit(needed)

    # =========================================================================
    # Statements
    # =========================================================================

    def _exec_statements(self, statements: List[Statement], scope: Scope) -> Value:
        result = null_val()
        for stmt in statements:
            result = self.evaluate(stmt, scope)
        return result

    def _exec_expression_statement(self, stmt: ExpressionStatement, scope: Scope) -> Value:
        return self.evaluate(stmt.expression, scope)

    def _exec_var_decl(self, stmt: VarDecl, scope: Scope) -> Value:
        value = self.evaluate(stmt.initializer, scope) if stmt.initializer else null_val()

        if stmt.targets:
            if value.kind != ValueKind.ARRAY:
                raise ScriptTypeError.create(
                    f"cannot destructure a {value.type_name}", stmt.span
                )
            items = value.data.snapshot()
            for i, target in enumerate(stmt.targets):
                scope.define(target, items[i] if i < len(items) else null_val(),
                             stmt.is_const, stmt.span)
        else:
            scope.define(stmt.name, value, stmt.is_const, stmt.span)
        return value

    def _exec_return(self, stmt: ReturnStatement, scope: Scope) -> Value:
        value = self.evaluate(stmt.value, scope) if stmt.value else null_val()
        raise ReturnSignal(value, stmt.span)

    def _exec_break(self, stmt: BreakStatement, scope: Scope) -> Value:
        raise BreakSignal(stmt.span)

    def _exec_continue(self, stmt: ContinueStatement, scope: Scope) -> Value:
        raise ContinueSignal(stmt.span)

    def _exec_throw(self, stmt: ThrowStatement, scope: Scope) -> Value:
        raise ThrowSignal(self.evaluate(stmt.value, scope), stmt.span)

    def _exec_enum(self, stmt: EnumDecl, scope: Scope) -> Value:
        """Bind the enum name to an object of uniquely tagged null variants."""
        base = EnumTag(stmt.name)
        entries = {
            variant: Value(ValueKind.NULL, None, {VARIANT_TAG: VariantTag(base, variant)})
            for variant in stmt.variants
        }
        holder = object_val(entries)
        enum_value = Value(ValueKind.OBJECT, holder.data, {ENUM_BASE_TAG: base})
        scope.define(stmt.name, enum_value, True, stmt.span)
        return enum_value

    def _exec_import(self, stmt: ImportStatement, scope: Scope) -> Value:
        record = self.loader.load(stmt.path, scope.module_filename, self, stmt.span)
        module_scope = record.scope

        names = stmt.names
        if stmt.import_all:
            for exported in module_scope.exported_names():
                scope.define(exported, module_scope.get_export(exported), span=stmt.span)
            return null_val()

        for item in names:
            value = module_scope.get_export(item.name)
            if value is None:
                raise ResolutionError.create(
                    f"'{item.name}' is not exported by '{stmt.path}'", item.span,
                    hints=[f"exported names: {', '.join(module_scope.exported_names()) or 'none'}"],
                )
            scope.define(item.local_name, value, span=item.span)
        return null_val()

    def _exec_export(self, stmt: ExportStatement, scope: Scope) -> Value:
        if stmt.declaration is None:
            for item in stmt.names:
                scope.declare_export(item.name, item.alias, item.span)
            return null_val()

        value = self.evaluate(stmt.declaration, scope)
        declaration = stmt.declaration
        if isinstance(declaration, VarDecl):
            names = declaration.targets or [declaration.name]
        else:
            names = [declaration.name]
        for name in names:
            scope.declare_export(name, span=stmt.span)
        return value

    # =========================================================================
    # Expressions
    # =========================================================================

    def _eval_literal(self, lit: Literal, scope: Scope) -> Value:
        if lit.literal_type == TokenType.NUMBER:
            return number_val(lit.value)
        if lit.literal_type == TokenType.STRING:
            return string_val(lit.value)
        if lit.literal_type in (TokenType.TRUE, TokenType.FALSE):
            return bool_val(lit.value)
        return null_val()

    def _eval_identifier(self, ident: Identifier, scope: Scope) -> Value:
        return scope.get(ident.name, ident.span)

    def _eval_array_literal(self, node: ArrayLiteral, scope: Scope) -> Value:
        return array_val([self.evaluate(e, scope) for e in node.elements])

    def _eval_object_literal(self, node: ObjectLiteral, scope: Scope) -> Value:
        return object_val({entry.key: self.evaluate(entry.value, scope) for entry in node.entries})

    def _eval_block(self, block: Block, scope: Scope) -> Value:
        return self._exec_statements(block.statements, scope.child_scope("block"))

    def _condition(self, expr: AstNode, scope: Scope, construct: str) -> bool:
        value = self.evaluate(expr, scope)
        if value.kind != ValueKind.BOOLEAN:
            raise ScriptTypeError.create(
                f"{construct} condition must be a boolean, got a {value.type_name}", expr.span
            )
        return value.data

    def _eval_if(self, node: IfExpr, scope: Scope) -> Value:
        if self._condition(node.condition, scope, "if"):
            return self.evaluate(node.then_branch, scope)
        if node.else_branch is not None:
            return self.evaluate(node.else_branch, scope)
        return null_val()

    def _eval_ternary(self, node: Ternary, scope: Scope) -> Value:
        if self._condition(node.condition, scope, "ternary"):
            return self.evaluate(node.then_expr, scope)
        return self.evaluate(node.else_expr, scope)

    # --- Operators ---

    def _eval_binary_op(self, op: BinaryOp, scope: Scope) -> Value:
        left = self.evaluate(op.left, scope)
        right = self.evaluate(op.right, scope)
        return self._binary(op.operator, left, right, op.span)

    def _binary(self, operator: TokenType, left: Value, right: Value, span: SourceSpan) -> Value:
        if operator == TokenType.EQ:
            return bool_val(values_equal(left, right))
        if operator == TokenType.NE:
            return bool_val(not values_equal(left, right))
        if operator == TokenType.IS:
            return bool_val(self._is_test(left, right, span))
        if operator == TokenType.IN:
            return bool_val(self._contains(right, left, span))
        if operator in (TokenType.LT, TokenType.GT, TokenType.LE, TokenType.GE):
            return bool_val(self._compare(operator, left, right, span))
        return self._arithmetic(operator, left, right, span)

    def _type_mismatch(self, operator: TokenType, left: Value, right: Value,
                       span: SourceSpan) -> ScriptTypeError:
        symbol = _OPERATOR_SYMBOLS.get(operator, operator.name)
        return ScriptTypeError.create(
            f"unsupported operand types for {symbol}: {left.type_name} and {right.type_name}", span
        )

    def _compare(self, operator: TokenType, left: Value, right: Value, span: SourceSpan) -> bool:
        if operator == TokenType.EQ:
            return values_equal(left, right)
        if operator == TokenType.NE:
            return not values_equal(left, right)
        if left.kind != right.kind or left.kind not in (ValueKind.NUMBER, ValueKind.STRING):
            raise self._type_mismatch(operator, left, right, span)
        a, b = left.data, right.data
        if operator == TokenType.LT:
            return a < b
        if operator == TokenType.GT:
            return a > b
        if operator == TokenType.LE:
            return a <= b
        return a >= b

    def _arithmetic(self, operator: TokenType, left: Value, right: Value, span: SourceSpan) -> Value:
        if operator == TokenType.PLUS and left.kind == ValueKind.STRING:
            if right.kind == ValueKind.STRING:
                return string_val(left.data + right.data)
            if right.kind in (ValueKind.NUMBER, ValueKind.BOOLEAN, ValueKind.NULL):
                return string_val(left.data + str(right))
            raise self._type_mismatch(operator, left, right, span)

        if left.kind != ValueKind.NUMBER or right.kind != ValueKind.NUMBER:
            raise self._type_mismatch(operator, left, right, span)

        a, b = left.data, right.data
        if operator == TokenType.PLUS:
            return number_val(a + b)
        if operator == TokenType.MINUS:
            return number_val(a - b)
        if operator == TokenType.STAR:
            return number_val(a * b)
        if operator == TokenType.SLASH:
            if b == 0:
                raise DivisionByZeroError.create("division by zero", span)
            return number_val(Fraction(a) / b)
        if operator == TokenType.PERCENT:
            if b == 0:
                raise DivisionByZeroError.create("modulo by zero", span)
            return number_val(a % b)
        if operator == TokenType.DOUBLE_STAR:
            if not isinstance(b, int):
                raise ScriptValueError.create("exponent must be a whole number", span)
            if a == 0 and b < 0:
                raise DivisionByZeroError.create("zero raised to a negative power", span)
            return number_val(Fraction(a) ** b)
        raise self._type_mismatch(operator, left, right, span)

    def _is_test(self, left: Value, right: Value, span: SourceSpan) -> bool:
        """
        x is Enum.Variant  -> variant tags match
        x is Enum          -> x carries any variant of Enum
        x is predicate?    -> predicate(x)
        otherwise          -> equality
        """
        if right.variant is not None:
            return left.variant == right.variant
        if right.enum_base is not None:
            return left.variant is not None and left.variant.enum == right.enum_base
        if right.is_callable():
            result = self.call_function(right, [left], span)
            if result.kind != ValueKind.BOOLEAN:
                raise ScriptTypeError.create(
                    f"'is' predicate must return a boolean, got a {result.type_name}", span
                )
            return result.data
        return values_equal(left, right)

    def _contains(self, container: Value, item: Value, span: SourceSpan) -> bool:
        if container.kind == ValueKind.ARRAY:
            return any(values_equal(item, element) for element in container.data.snapshot())
        if container.kind == ValueKind.OBJECT and item.kind == ValueKind.STRING:
            return item.data in container.data
        if container.kind == ValueKind.STRING and item.kind == ValueKind.STRING:
            return item.data in container.data
        raise ScriptTypeError.create(
            f"cannot test membership of a {item.type_name} in a {container.type_name}", span
        )

    def _eval_logical_op(self, op: LogicalOp, scope: Scope) -> Value:
        symbol = _OPERATOR_SYMBOLS[op.operator]
        left = self.evaluate(op.left, scope)
        if left.kind != ValueKind.BOOLEAN:
            raise ScriptTypeError.create(
                f"left operand of {symbol} must be a boolean, got a {left.type_name}", op.left.span
            )
        # Short circuit
        if op.operator == TokenType.AND and not left.data:
            return left
        if op.operator == TokenType.OR and left.data:
            return left

        right = self.evaluate(op.right, scope)
        if right.kind != ValueKind.BOOLEAN:
            raise ScriptTypeError.create(
                f"right operand of {symbol} must be a boolean, got a {right.type_name}", op.right.span
            )
        return right

    def _eval_unary_op(self, op: UnaryOp, scope: Scope) -> Value:
        operand = self.evaluate(op.operand, scope)

        if op.operator == TokenType.NOT:
            if operand.kind != ValueKind.BOOLEAN:
                raise ScriptTypeError.create(f"cannot negate a {operand.type_name}", op.span)
            return bool_val(not operand.data)
        if op.operator in (TokenType.MINUS, TokenType.PLUS):
            if operand.kind != ValueKind.NUMBER:
                raise ScriptTypeError.create(
                    f"bad operand type for unary {'-' if op.operator == TokenType.MINUS else '+'}: "
                    f"{operand.type_name}", op.span
                )
            return number_val(-operand.data if op.operator == TokenType.MINUS else operand.data)
        if op.operator == TokenType.DOLLAR:
            return number_val(length_of(operand, op.span))
        if op.operator == TokenType.TYPEOF:
            return string_val(operand.type_name)
        raise RuntimeFault.create(f"unknown unary operator: {op.operator.name}", op.span)

    # --- Assignment targets ---

    def _resolve_target(self, target: AstNode, scope: Scope) -> Tuple[Callable[[], Value], Callable[[Value], None]]:
        """Evaluate a target's container and key once; return (getter, setter)."""
        if isinstance(target, Identifier):
            return (lambda: scope.get(target.name, target.span),
                    lambda v: scope.set(target.name, v, target.span))

        if isinstance(target, MemberAccess):
            obj = self.evaluate(target.object, scope)
            return (lambda: self._get_member(obj, target.member, target.span),
                    lambda v: self._set_key(obj, string_val(target.member), v, target.span))

        if isinstance(target, IndexAccess):
            obj = self.evaluate(target.object, scope)
            index = self.evaluate(target.index, scope)
            return (lambda: self._index(obj, index, target.span),
                    lambda v: self._set_key(obj, index, v, target.span))

        raise RuntimeFault.create("invalid assignment target", target.span)

    def _eval_assignment(self, node: Assignment, scope: Scope) -> Value:
        getter, setter = self._resolve_target(node.target, scope)
        if node.operator == TokenType.ASSIGN:
            value = self.evaluate(node.value, scope)
        else:
            current = getter()
            value = self._arithmetic(ASSIGNMENT_OPERATORS[node.operator], current,
                                     self.evaluate(node.value, scope), node.span)
        setter(value)
        return value

    def _eval_update(self, node: UpdateExpr, scope: Scope) -> Value:
        getter, setter = self._resolve_target(node.target, scope)
        current = getter()
        if current.kind != ValueKind.NUMBER:
            symbol = "++" if node.operator == TokenType.INCREMENT else "--"
            raise ScriptTypeError.create(f"cannot apply {symbol} to a {current.type_name}", node.span)
        delta = 1 if node.operator == TokenType.INCREMENT else -1
        updated = number_val(current.data + delta)
        setter(updated)
        return updated if node.prefix else current

    # --- Members and indexing ---

    def _eval_member_access(self, node: MemberAccess, scope: Scope) -> Value:
        obj = self.evaluate(node.object, scope)
        return self._get_member(obj, node.member, node.span)

    def _get_member(self, obj: Value, name: str, span: SourceSpan) -> Value:
        if obj.kind == ValueKind.OBJECT:
            value = obj.data.get(name)
            if value is not None:
                return value
        method = self._prototype_lookup(obj, name)
        if method is not None:
            return method
        if obj.kind == ValueKind.OBJECT:
            return null_val()
        raise ScriptTypeError.create(f"a {obj.type_name} has no member '{name}'", span)

    def _prototype_lookup(self, obj: Value, name: str) -> Optional[Value]:
        for proto in self.natives.prototype_chain(obj):
            method = proto.data.get(name)
            if method is not None:
                return method
        return None

    def _eval_index_access(self, node: IndexAccess, scope: Scope) -> Value:
        obj = self.evaluate(node.object, scope)
        if isinstance(node.index, RangeExpr):
            return self._slice(obj, node.index, scope)
        index = self.evaluate(node.index, scope)
        return self._index(obj, index, node.span)

    def _index(self, obj: Value, index: Value, span: SourceSpan) -> Value:
        """Index by number or key; an array of indices gathers."""
        if index.kind == ValueKind.ARRAY and obj.kind in (ValueKind.ARRAY, ValueKind.STRING):
            picked = [self._index(obj, i, span) for i in index.data.snapshot()]
            if obj.kind == ValueKind.STRING:
                return string_val("".join(p.data for p in picked))
            return array_val(picked)

        if obj.kind in (ValueKind.ARRAY, ValueKind.STRING):
            position = self._position(obj, index, span)
            if obj.kind == ValueKind.STRING:
                return string_val(obj.data[position])
            return obj.data.get(position)

        if obj.kind == ValueKind.OBJECT:
            if index.kind != ValueKind.STRING:
                raise ScriptTypeError.create(
                    f"object keys must be strings, not {index.type_name}", span
                )
            value = obj.data.get(index.data)
            return value if value is not None else null_val()

        raise ScriptTypeError.create(f"a {obj.type_name} cannot be indexed", span)

    def _position(self, obj: Value, index: Value, span: SourceSpan) -> int:
        """Normalize a numeric index against a container, counting negatives from the end."""
        if index.kind != ValueKind.NUMBER or not isinstance(index.data, int):
            raise ScriptTypeError.create(
                f"{obj.type_name} indices must be whole numbers, not {index.type_name}", span
            )
        size = len(obj.data)
        position = index.data + size if index.data < 0 else index.data
        if not 0 <= position < size:
            raise ScriptIndexError.create(
                f"index {index.data} out of range for {obj.type_name} of length {size}", span
            )
        return position

    def _set_key(self, obj: Value, index: Value, value: Value, span: SourceSpan) -> None:
        if obj.kind == ValueKind.ARRAY:
            obj.data.set(self._position(obj, index, span), value)
        elif obj.kind == ValueKind.OBJECT:
            if index.kind != ValueKind.STRING:
                raise ScriptTypeError.create(
                    f"object keys must be strings, not {index.type_name}", span
                )
            obj.data.set(index.data, value)
        else:
            raise ScriptTypeError.create(f"cannot assign into a {obj.type_name}", span)

    # --- Ranges ---

    def _whole(self, value: Value, what: str, span: SourceSpan) -> int:
        if value.kind != ValueKind.NUMBER:
            raise ScriptTypeError.create(f"range {what} must be a number, got a {value.type_name}", span)
        if not isinstance(value.data, int):
            raise ScriptValueError.create(f"range {what} must be a whole number", span)
        return value.data

    def _eval_range(self, node: RangeExpr, scope: Scope) -> Value:
        """Evaluate a range to an array of whole numbers, ascending or descending."""
        return array_val(number_val(n) for n in self._range(node, scope))

    def _range(self, node: RangeExpr, scope: Scope, size: Optional[int] = None) -> range:
        """
        Build the lazy sequence a range expression denotes.

        When ``size`` is given the range is indexing a container of that
        length, and negative bounds count from its end.
        """
        start = self._whole(self.evaluate(node.start, scope), "start", node.span)
        end = self._whole(self.evaluate(node.end, scope), "end", node.span)
        if size is not None:
            start = start + size if start < 0 else start
            end = end + size if end < 0 else end
        direction = 1 if end >= start else -1

        if node.step is None:
            step = direction
        else:
            step = self._whole(self.evaluate(node.step, scope), "step", node.step.span)
            if step == 0:
                raise ScriptValueError.create("range step cannot be zero", node.step.span)
            if start != end and (step > 0) != (direction > 0):
                raise ScriptValueError.create(
                    f"range step {step} does not move from {start} towards {end}", node.step.span
                )

        stop = end + (1 if step > 0 else -1) if node.inclusive_end else end
        if not node.inclusive_start:
            start += step
        return range(start, stop, step)

    def _slice(self, obj: Value, node: RangeExpr, scope: Scope) -> Value:
        """Index a String or Array with a range literal."""
        if obj.kind not in (ValueKind.ARRAY, ValueKind.STRING):
            raise ScriptTypeError.create(f"a {obj.type_name} cannot be sliced", node.span)
        positions = self._range(node, scope, size=len(obj.data))
        picked = [self._index(obj, number_val(p), node.span) for p in positions]
        if obj.kind == ValueKind.STRING:
            return string_val("".join(p.data for p in picked))
        return array_val(picked)

    # --- Loops ---

    def _eval_while(self, node: WhileLoop, scope: Scope) -> Value:
        construct = "until" if node.negate else "while"
        while self._condition(node.condition, scope, construct) != node.negate:
            try:
                self.evaluate(node.body, scope)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return null_val()

    def _eval_loop(self, node: LoopExpr, scope: Scope) -> Value:
        while True:
            try:
                self.evaluate(node.body, scope)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return null_val()

    def _eval_for(self, node: ForIn, scope: Scope) -> Value:
        if isinstance(node.iterable, RangeExpr):
            numbers = self._range(node.iterable, scope)
            pairs = ((number_val(i), number_val(n)) for i, n in enumerate(numbers))
        else:
            iterable = self.evaluate(node.iterable, scope)
            pairs = iter_pairs(iterable, node.iterable.span)
        for index, item in pairs:
            frame = scope.child_scope("for")
            if node.index_name is not None:
                frame.define(node.index_name, index)
            frame.define(node.value_name, item)
            try:
                self._exec_statements(node.body.statements, frame)
            except BreakSignal:
                break
            except ContinueSignal:
                continue
        return null_val()

    # --- try / match ---

    def _eval_try(self, node: TryCatch, scope: Scope) -> Value:
        try:
            try:
                result = self.evaluate(node.try_block, scope)
            except ThrowSignal as signal:
                if node.catch_block is None:
                    raise
                result = self._run_catch(node, scope, signal.value)
            except ZephyrError as fault:
                if node.catch_block is None:
                    raise
                result = self._run_catch(node, scope, self.fault_to_value(fault))
        finally:
            if node.finally_block is not None:
                self.evaluate(node.finally_block, scope)
        return result

    def _run_catch(self, node: TryCatch, scope: Scope, error: Value) -> Value:
        frame = scope.child_scope("catch")
        if node.catch_name:
            frame.define(node.catch_name, error)
        return self._exec_statements(node.catch_block.statements, frame)

    def fault_to_value(self, fault: ZephyrError) -> Value:
        """Convert an engine error into the error object a catch block receives."""
        if isinstance(fault, UncaughtThrow):
            return fault.value
        if isinstance(fault, RuntimeFault):
            kind = fault.kind
            data = fault.data if isinstance(fault.data, Value) else None
        elif isinstance(fault, LexerError):
            kind, data = "LexError", None
        elif isinstance(fault, ParserError):
            kind, data = "ParseError", None
        else:
            kind, data = "Error", None
        return error_value(fault.message, kind, data, fault.span)

    def _eval_match(self, node: MatchExpr, scope: Scope) -> Value:
        subject = self.evaluate(node.subject, scope)
        for arm in node.arms:
            if arm.kind == "else":
                matched = True
            else:
                pattern = self.evaluate(arm.pattern, scope)
                if arm.kind == "is":
                    matched = self._is_test(subject, pattern, arm.span)
                elif arm.kind == "comparison":
                    matched = self._compare(arm.operator, subject, pattern, arm.span)
                else:
                    matched = values_equal(subject, pattern)
            if matched:
                return self.evaluate(arm.body, scope)
        raise NoMatchError.create(f"no match arm matched {to_repr(subject)}", node.span)

    # =========================================================================
    # Functions and calls
    # =========================================================================

    def _eval_function_def(self, node: FunctionDef, scope: Scope) -> Value:
        if node.is_pure:
            self._check_pure_definition(node, scope)
        value = function_val(Closure(node, scope))
        if node.name:
            scope.define(node.name, value, span=node.span)
        return value

    def _check_pure_definition(self, node: FunctionDef, scope: Scope) -> None:
        """Reject free names that resolve to a non-global enclosing frame."""
        for name, ident in _free_identifiers(node).items():
            frame = scope.lookup_frame(name)
            if frame is not None and not frame.is_global:
                raise ScopeViolationError.create(
                    f"pure function {node.name or '<anonymous>'}() cannot capture '{name}'",
                    ident.span,
                    hints=["pure functions may only use their parameters and globals"],
                )

    def _eval_call(self, node: Call, scope: Scope) -> Value:
        callee = node.callee
        if isinstance(callee, MemberAccess):
            receiver = self.evaluate(callee.object, scope)
            func, bound = self._lookup_method(receiver, callee.member, callee.span)
            args = [self.evaluate(arg, scope) for arg in node.arguments]
            if bound:
                args.insert(0, receiver)
            return self.call_function(func, args, node.span)

        func = self.evaluate(callee, scope)
        args = [self.evaluate(arg, scope) for arg in node.arguments]
        return self.call_function(func, args, node.span)

    def _lookup_method(self, receiver: Value, name: str, span: SourceSpan) -> Tuple[Value, bool]:
        """
        Resolve recv.name(...). Own object members are called as-is;
        prototype methods get the receiver as their first argument.
        """
        if receiver.kind == ValueKind.OBJECT:
            own = receiver.data.get(name)
            if own is not None:
                return own, False
        method = self._prototype_lookup(receiver, name)
        if method is not None:
            return method, True
        raise ScriptTypeError.create(f"a {receiver.type_name} has no method '{name}'", span)

    @property
    def call_depth(self) -> int:
        return getattr(self._local, "depth", 0)

    def _call_closure(self, closure: Closure, args: List[Value], span: Optional[SourceSpan]) -> Value:
        fdef = closure.definition
        depth = self.call_depth
        if depth >= self.config.max_call_depth:
            raise ScriptRecursionError.create(
                f"maximum call depth ({self.config.max_call_depth}) exceeded in {closure.name}()", span
            )

        frame = closure.scope.child_scope(name=f"call:{closure.name}", pure=fdef.is_pure)
        self._bind_parameters(closure, frame, args, span)
        self._check_constraints(closure, frame, span)

        self._local.depth = depth + 1
        try:
            result = self._exec_statements(fdef.body.statements, frame)
        except ReturnSignal as signal:
            result = signal.value
        except (BreakSignal, ContinueSignal) as signal:
            keyword = "break" if isinstance(signal, BreakSignal) else "continue"
            raise RuntimeFault.create(f"'{keyword}' outside of a loop", signal.span)
        except RecursionError:
            raise ScriptRecursionError.create(f"host recursion limit reached in {closure.name}()", span)
        finally:
            self._local.depth = depth

        if fdef.name and is_predicate_name(fdef.name) and result.kind != ValueKind.BOOLEAN:
            raise ScriptTypeError.create(
                f"predicate {fdef.name}() must return a boolean, got a {result.type_name}", span
            )
        return result

    def _bind_parameters(self, closure: Closure, frame: Scope, args: List[Value],
                         span: Optional[SourceSpan]) -> None:
        """
        Bind arguments positionally. Parameters before __args__ take arguments
        from the front, parameters after it from the back, and __args__ gets
        the rest as an array. Missing arguments are null.
        """
        params = closure.definition.parameters
        variadic = closure.definition.variadic_index

        if variadic is None:
            if len(args) > len(params):
                raise ArityError.create(
                    f"{closure.name}() takes {len(params)} argument"
                    f"{'' if len(params) == 1 else 's'} but {len(args)} were given", span
                )
            for i, param in enumerate(params):
                frame.define(param.name, args[i] if i < len(args) else null_val())
            return

        leading = params[:variadic]
        trailing = params[variadic + 1:]
        for i, param in enumerate(leading):
            frame.define(param.name, args[i] if i < len(args) else null_val())

        rest = args[len(leading):]
        split = max(0, len(rest) - len(trailing))
        collected, tail = rest[:split], rest[split:]
        for i, param in enumerate(trailing):
            frame.define(param.name, tail[i] if i < len(tail) else null_val())
        frame.define(params[variadic].name, array_val(collected))

    def _check_constraints(self, closure: Closure, frame: Scope, span: Optional[SourceSpan]) -> None:
        """Run parameter predicates and where clauses before the body."""
        fdef = closure.definition
        for param in fdef.parameters:
            if param.predicate is None:
                continue
            predicate = self.evaluate(param.predicate, frame)
            extra = [self.evaluate(arg, frame) for arg in param.predicate_args]
            argument = frame.get(param.name)
            result = self.call_function(predicate, [argument] + extra, span)
            if not (result.kind == ValueKind.BOOLEAN and result.data):
                pred_name = _describe_callee(param.predicate)
                raise ArgumentTypeError.create(
                    f"argument '{param.name}' of {closure.name}() failed predicate {pred_name} "
                    f"(got {to_repr(argument)})",
                    span,
                    data=argument,
                )

        for clause in fdef.where_clauses:
            result = self.evaluate(clause, frame)
            if result.kind != ValueKind.BOOLEAN:
                raise ScriptTypeError.create(
                    f"where clause of {closure.name}() must be a boolean, got a {result.type_name}",
                    clause.span,
                )
            if not result.data:
                raise ArgumentTypeError.create(
                    f"where clause of {closure.name}() rejected its arguments", span
                )

    def _call_native(self, native, args: List[Value], span: Optional[SourceSpan]) -> Value:
        if not native.accepts(len(args)):
            raise ArityError.create(
                f"{native.name}() takes {native.describe_arity()} arguments but {len(args)} were given",
                span,
            )
        try:
            result = native.implementation(self, span, *args)
        except RuntimeFault as fault:
            if fault.diagnostic.span is UNKNOWN_SPAN and span is not None:
                fault.diagnostic.span = span
            raise
        except (OSError, ValueError, TypeError, ArithmeticError) as e:
            raise NativeError.create(f"{native.name}(): {e}", span) from e
        return result if result is not None else null_val()


# =============================================================================
# Helpers
# =============================================================================

def _prelude_program(name: str) -> Program:
    with _prelude_lock:
        program = _prelude_programs.get(name)
        if program is None:
            path = LIB_DIR / name
            program = parse_source(path.read_text(encoding="utf-8"), f"<prelude:{name}>")
            _prelude_programs[name] = program
        return program


def _describe_callee(expr: AstNode) -> str:
    if isinstance(expr, Identifier):
        return expr.name
    if isinstance(expr, MemberAccess):
        return f"{_describe_callee(expr.object)}.{expr.member}"
    return "<predicate>"


def _free_identifiers(node: FunctionDef) -> Dict[str, Identifier]:
    """
    Identifiers a function body uses but does not bind itself.

    Any name bound anywhere inside the function (parameters, let/const,
    nested functions and their parameters, loop and catch variables,
    enums, imports) counts as local.
    """
    bound: Set[str] = {p.name for p in node.parameters}
    used: Dict[str, Identifier] = {}

    for child in walk(node):
        if isinstance(child, VarDecl):
            bound.update(child.targets or [child.name])
        elif isinstance(child, FunctionDef):
            if child is not node and child.name:
                bound.add(child.name)
            bound.update(p.name for p in child.parameters)
        elif isinstance(child, ForIn):
            bound.add(child.value_name)
            if child.index_name:
                bound.add(child.index_name)
        elif isinstance(child, TryCatch) and child.catch_name:
            bound.add(child.catch_name)
        elif isinstance(child, EnumDecl):
            bound.add(child.name)
        elif isinstance(child, ImportStatement):
            bound.update(item.local_name for item in child.names)
        elif isinstance(child, Identifier):
            used.setdefault(child.name, child)

    return {name: ident for name, ident in used.items() if name not in bound}


# =============================================================================
# Convenience functions
# =============================================================================

def execute(program: Program, interpreter: Optional[Interpreter] = None) -> ExecutionResult:
    """
    Run a parsed program, capturing errors in the result.

    This is a convenience wrapper around Interpreter.run().
    """
    interpreter = interpreter or Interpreter()
    try:
        value = interpreter.run(program)
    except UncaughtThrow as e:
        return ExecutionResult(success=False, thrown=e.value, error=e, error_message=str(e))
    except RuntimeFault as e:
        return ExecutionResult(
            success=False, thrown=interpreter.fault_to_value(e), error=e, error_message=str(e),
        )
    return ExecutionResult(success=True, value=value)


def run_source(source: str, filename: Optional[str] = None,
               interpreter: Optional[Interpreter] = None,
               config: Optional[EngineConfig] = None) -> ExecutionResult:
    """
    High-level API to parse and run Zephyr source in one call:

        from zephyr import run_source

        result = run_source('''
            func add(a: is_number?, b: is_number?) { a + b }
            add(2, 3)
        ''')

        if result.success:
            print(result.python_value)   # 5
        else:
            print(result.error_message)
    """
    try:
        program = parse_source(source, filename)
    except (LexerError, ParserError) as e:
        return ExecutionResult(success=False, error=e, error_message=str(e))

    interpreter = interpreter or Interpreter(config=config)
    result = execute(program, interpreter)
    if result.error is not None and result.error.diagnostic.source_line is None:
        span = result.error.span
        lines = source.splitlines()
        if span.start.filename == filename and 1 <= span.start.line <= len(lines):
            result.error.diagnostic.source_line = lines[span.start.line - 1]
            result.error_message = str(result.error)
    return result


def run_file(path: Union[str, Path], interpreter: Optional[Interpreter] = None,
             config: Optional[EngineConfig] = None) -> ExecutionResult:
    """Run a .zr file."""
    path = Path(path).resolve()
    return run_source(path.read_text(encoding="utf-8"), str(path), interpreter, config)
