"""
Abstract Syntax Tree (AST) node definitions for Zephyr.

The AST represents the structure of a parsed Zephyr program. It is built
once by the parser and never mutated afterwards; the interpreter only
reads it.

Everything that produces a value is an Expression, including blocks,
``if``, ``match``, ``try`` and loops. Statements wrap declarations and
non-local exits.
"""

from dataclasses import dataclass, field, fields
from typing import Optional, List, Any, Iterator
from abc import ABC
from .tokens import SourceSpan, TokenType


# =============================================================================
# Base Classes
# =============================================================================

@dataclass
class AstNode(ABC):
    """Base class for all AST nodes."""
    span: SourceSpan  # Source location for error reporting

    def accept(self, visitor: "AstVisitor") -> Any:
        """Accept a visitor for traversal."""
        method_name = f"visit_{self.__class__.__name__}"
        method = getattr(visitor, method_name, visitor.generic_visit)
        return method(self)


class AstVisitor(ABC):
    """Base class for AST visitors."""

    def generic_visit(self, node: AstNode) -> Any:
        """Default visit method."""
        raise NotImplementedError(f"No visitor for {node.__class__.__name__}")


# =============================================================================
# Expressions
# =============================================================================

@dataclass
class Expression(AstNode):
    """Base class for expressions."""
    pass


@dataclass
class Literal(Expression):
    """A literal number, string, boolean or null."""
    value: Any
    literal_type: TokenType


@dataclass
class Identifier(Expression):
    """A variable reference."""
    name: str


@dataclass
class BinaryOp(Expression):
    """A binary operation (e.g., a + b, x == y, v in arr, x is Animal.Dog)."""
    left: Expression
    operator: TokenType
    right: Expression


@dataclass
class LogicalOp(Expression):
    """A short-circuiting && or ||."""
    left: Expression
    operator: TokenType
    right: Expression


@dataclass
class UnaryOp(Expression):
    """A unary operation (!x, -x, +x, $x, typeof x)."""
    operator: TokenType
    operand: Expression


@dataclass
class UpdateExpr(Expression):
    """Increment or decrement: ++x, x++, --x, x--."""
    operator: TokenType     # INCREMENT or DECREMENT
    target: Expression
    prefix: bool


@dataclass
class Assignment(Expression):
    """Assignment to a variable, member or index (=, +=, -=, ...)."""
    target: Expression
    operator: TokenType
    value: Expression


@dataclass
class MemberAccess(Expression):
    """Member access (obj.member)."""
    object: Expression
    member: str


@dataclass
class IndexAccess(Expression):
    """Index access (obj[index])."""
    object: Expression
    index: Expression


@dataclass
class Call(Expression):
    """Function call (callee(args)). Method calls use a MemberAccess callee."""
    callee: Expression
    arguments: List[Expression]


@dataclass
class ArrayLiteral(Expression):
    """An array literal [a, b, c]."""
    elements: List[Expression]


@dataclass
class ObjectEntry(AstNode):
    """A key/value pair in an object literal."""
    key: str
    value: Expression


@dataclass
class ObjectLiteral(Expression):
    """An object literal .{ key: value, shorthand }."""
    entries: List[ObjectEntry]


@dataclass
class RangeExpr(Expression):
    """A range (a..b, a..=b, a.<b, a<.b, optionally 'step n')."""
    start: Expression
    end: Expression
    inclusive_start: bool = True
    inclusive_end: bool = True
    step: Optional[Expression] = None


@dataclass
class Block(Expression):
    """A braced block. Its value is the value of its last statement."""
    statements: List["Statement"]


@dataclass
class IfExpr(Expression):
    """if/else if/else; else_branch is a Block, another IfExpr, or None."""
    condition: Expression
    then_branch: Block
    else_branch: Optional[Expression] = None


@dataclass
class Ternary(Expression):
    """Conditional expression: cond ? a : b."""
    condition: Expression
    then_expr: Expression
    else_expr: Expression


@dataclass
class WhileLoop(Expression):
    """while/until loop. 'until c' is a while loop with negate=True."""
    condition: Expression
    body: Block
    negate: bool = False


@dataclass
class LoopExpr(Expression):
    """An unconditional 'loop { }'."""
    body: Block


@dataclass
class ForIn(Expression):
    """for x in v { } or for i, x in v { }."""
    index_name: Optional[str]
    value_name: str
    iterable: Expression
    body: Block


@dataclass
class TryCatch(Expression):
    """try { } catch [name] { } finally { }."""
    try_block: Block
    catch_name: Optional[str] = None
    catch_block: Optional[Block] = None
    finally_block: Optional[Block] = None


@dataclass
class MatchArm(AstNode):
    """
    One arm of a match expression.

    kind is one of:
    - "equality":   <expr> { ... }
    - "comparison": <op> <expr> { ... }
    - "is":         is <expr> { ... }
    - "else":       else { ... }
    """
    kind: str
    body: Block
    pattern: Optional[Expression] = None
    operator: Optional[TokenType] = None


@dataclass
class MatchExpr(Expression):
    """Match expression with ordered arms."""
    subject: Expression
    arms: List[MatchArm]


@dataclass
class Parameter(AstNode):
    """
    A function parameter.

    ``name: pred?`` stores ``pred?`` as the predicate; ``name: pred(x)``
    stores ``pred`` as the predicate with ``[x]`` as extra arguments,
    so the check becomes ``pred(name, x)``.
    """
    name: str
    predicate: Optional[Expression] = None
    predicate_args: List[Expression] = field(default_factory=list)


VARIADIC_NAME = "__args__"


@dataclass
class FunctionDef(Expression):
    """A function literal or declaration."""
    name: Optional[str]
    parameters: List[Parameter]
    body: Block
    where_clauses: List[Expression] = field(default_factory=list)
    is_pure: bool = False

    @property
    def variadic_index(self) -> Optional[int]:
        """Position of the __args__ parameter, if declared."""
        for i, param in enumerate(self.parameters):
            if param.name == VARIADIC_NAME:
                return i
        return None


# =============================================================================
# Statements
# =============================================================================

@dataclass
class Statement(AstNode):
    """Base class for statements."""
    pass


@dataclass
class ExpressionStatement(Statement):
    """An expression used as a statement."""
    expression: Expression


@dataclass
class VarDecl(Statement):
    """
    Variable declaration.

    ``let x = 1;`` sets name, ``let [a, b] = arr;`` sets targets.
    """
    name: Optional[str]
    initializer: Optional[Expression] = None
    is_const: bool = False
    targets: List[str] = field(default_factory=list)


@dataclass
class ReturnStatement(Statement):
    """return [value];"""
    value: Optional[Expression] = None


@dataclass
class BreakStatement(Statement):
    """break;"""
    pass


@dataclass
class ContinueStatement(Statement):
    """continue;"""
    pass


@dataclass
class ThrowStatement(Statement):
    """throw value;"""
    value: Expression


@dataclass
class EnumDecl(Statement):
    """enum Name { A, B, C }"""
    name: str
    variants: List[str]


@dataclass
class ImportName(AstNode):
    """An imported or exported name with an optional alias."""
    name: str
    alias: Optional[str] = None

    @property
    def local_name(self) -> str:
        return self.alias or self.name


@dataclass
class ImportStatement(Statement):
    """
    from "path" import a, b as c;
    import "path" expose a, b as c;
    import "path";

    ``import_all`` is set for ``import *`` / ``expose *``.
    """
    path: str
    names: List[ImportName] = field(default_factory=list)
    import_all: bool = False
    style: str = "from"


@dataclass
class ExportStatement(Statement):
    """export <declaration> or export a, b as c;"""
    declaration: Optional[AstNode] = None
    names: List[ImportName] = field(default_factory=list)


@dataclass
class Program(AstNode):
    """Root node: a whole source file."""
    statements: List[Statement]
    filename: Optional[str] = None


# =============================================================================
# Traversal helpers
# =============================================================================

def iter_child_nodes(node: AstNode) -> Iterator[AstNode]:
    """Yield the direct child nodes of ``node``."""
    for f in fields(node):
        value = getattr(node, f.name)
        if isinstance(value, AstNode):
            yield value
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, AstNode):
                    yield item


def walk(node: AstNode) -> Iterator[AstNode]:
    """Yield ``node`` and all of its descendants, depth first."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(list(iter_child_nodes(current))))


def dump_ast(node: Any, indent: int = 0) -> str:
    """Render an AST as an indented tree for debugging."""
    pad = "  " * indent
    if isinstance(node, list):
        return "\n".join(dump_ast(item, indent) for item in node)
    if not isinstance(node, AstNode):
        return f"{pad}{node!r}"

    lines = [f"{pad}{node.__class__.__name__}"]
    for f in fields(node):
        if f.name == "span":
            continue
        value = getattr(node, f.name)
        if isinstance(value, AstNode) or (isinstance(value, list) and value
                                          and isinstance(value[0], AstNode)):
            lines.append(f"{pad}  {f.name}:")
            lines.append(dump_ast(value, indent + 2))
        elif isinstance(value, TokenType):
            lines.append(f"{pad}  {f.name}: {value.name}")
        else:
            lines.append(f"{pad}  {f.name}: {value!r}")
    return "\n".join(lines)
