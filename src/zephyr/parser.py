"""
Recursive descent parser for Zephyr.

Converts a token stream into an Abstract Syntax Tree (AST). Parsing stops
at the first error.
"""

from typing import List, Optional
from .tokens import (
    Token, TokenType, SourceSpan, ASSIGNMENT_OPERATORS, COMPARISON_OPERATORS,
)
from .ast import (
    # Expressions
    Expression, Literal, Identifier, BinaryOp, LogicalOp, UnaryOp, UpdateExpr,
    Assignment, MemberAccess, IndexAccess, Call, ArrayLiteral, ObjectEntry,
    ObjectLiteral, RangeExpr, Block, IfExpr, Ternary, WhileLoop, LoopExpr,
    ForIn, TryCatch, MatchArm, MatchExpr, Parameter, FunctionDef, VARIADIC_NAME,
    # Statements
    Statement, ExpressionStatement, VarDecl, ReturnStatement, BreakStatement,
    ContinueStatement, ThrowStatement, EnumDecl, ImportName, ImportStatement,
    ExportStatement, Program,
)
from .errors import (
    error_unexpected_token,
    error_unexpected_eof,
    error_invalid_expression,
    error_else_arm_not_last,
    error_duplicate_variadic,
)


_RANGE_OPERATORS = {
    # token: (inclusive_start, inclusive_end)
    TokenType.RANGE: (True, True),
    TokenType.RANGE_INCLUSIVE: (True, True),
    TokenType.RANGE_EXCLUSIVE_END: (True, False),
    TokenType.RANGE_EXCLUSIVE_START: (False, True),
}


class Parser:
    """
    Recursive descent parser for Zephyr.

    Usage:
        parser = Parser(tokens)
        program = parser.parse_program()

    The parser implements precedence climbing for binary expressions:
        Lowest:  = += -= *= /= %=   (right-associative, handled separately)
                 ?:                 (handled separately)
                 ||
                 &&
                 == != < > <= >= in is
                 .. ..= .< <.       (optional 'step n')
                 + -
                 * / %
        Highest: ** (power, right-associative)
                 unary (! - + $ typeof ++ --)
    """

    # Operator precedence levels (higher = tighter binding)
    PRECEDENCE = {
        TokenType.OR: 1,
        TokenType.AND: 2,
        TokenType.EQ: 3,
        TokenType.NE: 3,
        TokenType.LT: 3,
        TokenType.GT: 3,
        TokenType.LE: 3,
        TokenType.GE: 3,
        TokenType.IN: 3,
        TokenType.IS: 3,
        TokenType.RANGE: 4,
        TokenType.RANGE_INCLUSIVE: 4,
        TokenType.RANGE_EXCLUSIVE_END: 4,
        TokenType.RANGE_EXCLUSIVE_START: 4,
        TokenType.PLUS: 5,
        TokenType.MINUS: 5,
        TokenType.STAR: 6,
        TokenType.SLASH: 6,
        TokenType.PERCENT: 6,
        TokenType.DOUBLE_STAR: 7,  # Power (right-associative)
    }

    # Right-associative operators
    RIGHT_ASSOCIATIVE = {TokenType.DOUBLE_STAR}

    UNARY_OPERATORS = {
        TokenType.NOT, TokenType.MINUS, TokenType.PLUS,
        TokenType.DOLLAR, TokenType.TYPEOF,
    }

    def __init__(self, tokens: List[Token], filename: Optional[str] = None, source: Optional[str] = None):
        self.tokens = tokens
        self.filename = filename
        self.source = source
        self.pos = 0
        self._lines = source.splitlines() if source else []

    # =========================================================================
    # Token Navigation
    # =========================================================================

    def _current(self) -> Token:
        """Get current token."""
        if self.pos >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[self.pos]

    def _peek(self, offset: int = 0) -> Token:
        """Peek at token at current position + offset."""
        idx = self.pos + offset
        if idx >= len(self.tokens):
            return self.tokens[-1]  # EOF
        return self.tokens[idx]

    def _is_at_end(self) -> bool:
        return self._current().type == TokenType.EOF

    def _check(self, token_type: TokenType) -> bool:
        return self._current().type == token_type

    def _check_any(self, *token_types: TokenType) -> bool:
        return self._current().type in token_types

    def _check_word(self, word: str) -> bool:
        """Check for a contextual keyword (an identifier such as 'step')."""
        token = self._current()
        return token.type == TokenType.IDENTIFIER and token.value == word

    def _advance(self) -> Token:
        """Consume and return current token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _consume(self, token_type: TokenType, expected: str) -> Token:
        """Consume token of expected type, or raise error."""
        if self._check(token_type):
            return self._advance()
        self._error(expected)

    def _match(self, *token_types: TokenType) -> Optional[Token]:
        """Consume token if it matches any of the given types."""
        if self._current().type in token_types:
            return self._advance()
        return None

    def _source_line(self, line: int) -> Optional[str]:
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None

    def _error(self, expected: str) -> None:
        """Raise a parser error."""
        token = self._current()
        if token.type == TokenType.EOF:
            raise error_unexpected_eof(expected, token.span)
        found = f"'{token.lexeme}'" if token.lexeme else token.type.name
        raise error_unexpected_token(
            expected, found, token.span, self._source_line(token.span.start.line)
        )

    def _span_from(self, start: Token) -> SourceSpan:
        """Create a span from start token to the previously consumed token."""
        prev_pos = max(0, self.pos - 1)
        end_token = self.tokens[prev_pos]
        return SourceSpan(start.span.start, end_token.span.end)

    def _skip_semicolons(self) -> None:
        while self._match(TokenType.SEMICOLON):
            pass

    # =========================================================================
    # Program and Statements
    # =========================================================================

    def parse_program(self) -> Program:
        """Parse a whole source file."""
        start = self._current()
        statements = []
        self._skip_semicolons()
        while not self._is_at_end():
            statements.append(self._parse_statement())
            self._skip_semicolons()
        return Program(span=self._span_from(start), statements=statements,
                       filename=self.filename)

    def _parse_statement(self) -> Statement:
        """Parse one statement."""
        token = self._current()

        if token.type in (TokenType.LET, TokenType.CONST):
            return self._parse_var_decl()
        if token.type == TokenType.RETURN:
            return self._parse_return_statement()
        if token.type == TokenType.BREAK:
            self._advance()
            return BreakStatement(span=token.span)
        if token.type == TokenType.CONTINUE:
            self._advance()
            return ContinueStatement(span=token.span)
        if token.type == TokenType.THROW:
            self._advance()
            value = self._parse_expression()
            return ThrowStatement(span=self._span_from(token), value=value)
        if token.type == TokenType.ENUM:
            return self._parse_enum_decl()
        if token.type in (TokenType.IMPORT, TokenType.FROM):
            return self._parse_import_statement()
        if token.type == TokenType.EXPORT:
            return self._parse_export_statement()

        expr = self._parse_expression()
        return ExpressionStatement(span=expr.span, expression=expr)

    def _parse_var_decl(self) -> VarDecl:
        """Parse 'let x = e', 'let x', 'const x = e' or 'let [a, b] = e'."""
        start = self._advance()
        is_const = start.type == TokenType.CONST

        name = None
        targets = []
        if self._match(TokenType.LBRACKET):
            if not self._check(TokenType.RBRACKET):
                targets.append(self._consume(TokenType.IDENTIFIER, "identifier").value)
                while self._match(TokenType.COMMA):
                    if self._check(TokenType.RBRACKET):
                        break
                    targets.append(self._consume(TokenType.IDENTIFIER, "identifier").value)
            self._consume(TokenType.RBRACKET, "']'")
        else:
            name = self._consume(TokenType.IDENTIFIER, "variable name").value

        initializer = None
        if self._match(TokenType.ASSIGN):
            initializer = self._parse_expression()
        elif is_const or targets:
            self._error("'=' and an initializer")

        return VarDecl(
            span=self._span_from(start),
            name=name,
            initializer=initializer,
            is_const=is_const,
            targets=targets,
        )

    def _parse_return_statement(self) -> ReturnStatement:
        start = self._advance()
        value = None
        if not self._check_any(TokenType.SEMICOLON, TokenType.RBRACE, TokenType.EOF):
            value = self._parse_expression()
        return ReturnStatement(span=self._span_from(start), value=value)

    def _parse_enum_decl(self) -> EnumDecl:
        """Parse 'enum Name { A, B, C }'."""
        start = self._advance()
        name = self._consume(TokenType.IDENTIFIER, "enum name").value
        self._consume(TokenType.LBRACE, "'{'")
        variants = []
        while not self._check(TokenType.RBRACE):
            variants.append(self._consume(TokenType.IDENTIFIER, "variant name").value)
            if not self._match(TokenType.COMMA):
                break
        self._consume(TokenType.RBRACE, "'}'")
        return EnumDecl(span=self._span_from(start), name=name, variants=variants)

    def _parse_name_list(self) -> List[ImportName]:
        """Parse 'a, b as c' for imports and exports."""
        names = []
        while True:
            token = self._consume(TokenType.IDENTIFIER, "name")
            alias = None
            if self._match(TokenType.AS):
                alias = self._consume(TokenType.IDENTIFIER, "alias").value
            names.append(ImportName(span=self._span_from(token), name=token.value, alias=alias))
            if not self._match(TokenType.COMMA):
                break
        return names

    def _parse_import_statement(self) -> ImportStatement:
        """
        Parse either import form:

            from "path" import a, b as c;
            from "path" import *;
            import "path" expose a, b as c;
            import "path" expose *;
            import "path";
        """
        start = self._advance()
        path = self._consume(TokenType.STRING, "module path string").value
        names: List[ImportName] = []
        import_all = False

        if start.type == TokenType.FROM:
            self._consume(TokenType.IMPORT, "'import'")
            if self._match(TokenType.STAR):
                import_all = True
            else:
                names = self._parse_name_list()
            style = "from"
        else:
            style = "expose"
            if self._check_word("expose"):
                self._advance()
                if self._match(TokenType.STAR):
                    import_all = True
                else:
                    names = self._parse_name_list()

        return ImportStatement(
            span=self._span_from(start),
            path=path,
            names=names,
            import_all=import_all,
            style=style,
        )

    def _parse_export_statement(self) -> ExportStatement:
        """Parse 'export <declaration>' or 'export a, b as c'."""
        start = self._advance()

        if self._check_any(TokenType.LET, TokenType.CONST):
            declaration = self._parse_var_decl()
        elif self._check(TokenType.ENUM):
            declaration = self._parse_enum_decl()
        elif self._check_any(TokenType.FUNC, TokenType.PURE):
            declaration = self._parse_function_def()
            if declaration.name is None:
                raise error_invalid_expression(
                    "exported functions must be named", declaration.span,
                    self._source_line(declaration.span.start.line),
                )
        else:
            names = self._parse_name_list()
            return ExportStatement(span=self._span_from(start), names=names)

        return ExportStatement(span=self._span_from(start), declaration=declaration)

    # =========================================================================
    # Expressions
    # =========================================================================

    def _parse_expression(self) -> Expression:
        """Parse an expression (lowest precedence: assignment)."""
        return self._parse_assignment()

    def _parse_assignment(self) -> Expression:
        target = self._parse_ternary()

        if self._current().type in ASSIGNMENT_OPERATORS:
            op = self._advance()
            self._check_assignable(target)
            value = self._parse_assignment()
            return Assignment(
                span=SourceSpan(target.span.start, value.span.end),
                target=target,
                operator=op.type,
                value=value,
            )
        return target

    def _check_assignable(self, target: Expression) -> None:
        if not isinstance(target, (Identifier, MemberAccess, IndexAccess)):
            raise error_invalid_expression(
                "invalid assignment target", target.span,
                self._source_line(target.span.start.line),
            )

    def _parse_ternary(self) -> Expression:
        condition = self._parse_binary_expr(1)
        if self._match(TokenType.QUESTION):
            then_expr = self._parse_ternary()
            self._consume(TokenType.COLON, "':'")
            else_expr = self._parse_ternary()
            return Ternary(
                span=SourceSpan(condition.span.start, else_expr.span.end),
                condition=condition,
                then_expr=then_expr,
                else_expr=else_expr,
            )
        return condition

    def _parse_binary_expr(self, min_precedence: int) -> Expression:
        """Parse binary expressions with precedence climbing."""
        left = self._parse_unary_expr()

        while True:
            op_token = self._current()
            precedence = self.PRECEDENCE.get(op_token.type)

            if precedence is None or precedence < min_precedence:
                break

            self._advance()  # consume operator

            # Right-associative operators use same precedence, others use precedence + 1
            next_precedence = precedence if op_token.type in self.RIGHT_ASSOCIATIVE else precedence + 1
            right = self._parse_binary_expr(next_precedence)

            if op_token.type in _RANGE_OPERATORS:
                left = self._finish_range(left, op_token, right)
            elif op_token.type in (TokenType.AND, TokenType.OR):
                left = LogicalOp(
                    span=SourceSpan(left.span.start, right.span.end),
                    left=left,
                    operator=op_token.type,
                    right=right,
                )
            else:
                left = BinaryOp(
                    span=SourceSpan(left.span.start, right.span.end),
                    left=left,
                    operator=op_token.type,
                    right=right,
                )

        return left

    def _finish_range(self, start: Expression, op_token: Token, end: Expression) -> RangeExpr:
        inclusive_start, inclusive_end = _RANGE_OPERATORS[op_token.type]
        step = None
        if self._check_word("step"):
            self._advance()
            step = self._parse_binary_expr(self.PRECEDENCE[TokenType.PLUS])
        last = step if step is not None else end
        return RangeExpr(
            span=SourceSpan(start.span.start, last.span.end),
            start=start,
            end=end,
            inclusive_start=inclusive_start,
            inclusive_end=inclusive_end,
            step=step,
        )

    def _parse_unary_expr(self) -> Expression:
        """Parse unary expressions (! - + $ typeof, prefix ++/--)."""
        if self._check_any(*self.UNARY_OPERATORS):
            op = self._advance()
            operand = self._parse_unary_expr()
            return UnaryOp(
                span=SourceSpan(op.span.start, operand.span.end),
                operator=op.type,
                operand=operand,
            )

        if self._check_any(TokenType.INCREMENT, TokenType.DECREMENT):
            op = self._advance()
            target = self._parse_unary_expr()
            self._check_assignable(target)
            return UpdateExpr(
                span=SourceSpan(op.span.start, target.span.end),
                operator=op.type,
                target=target,
                prefix=True,
            )

        return self._parse_postfix_expr()

    def _parse_postfix_expr(self) -> Expression:
        """Parse postfix expressions (calls, member access, indexing, x++)."""
        expr = self._parse_primary_expr()

        while True:
            if self._check(TokenType.LPAREN):
                expr = self._parse_call(expr)
            elif self._check(TokenType.DOT) and self._peek(1).type != TokenType.LBRACE:
                self._advance()  # consume '.'
                member = self._consume(TokenType.IDENTIFIER, "member name")
                expr = MemberAccess(
                    span=SourceSpan(expr.span.start, member.span.end),
                    object=expr,
                    member=member.value,
                )
            elif self._check(TokenType.LBRACKET):
                self._advance()  # consume '['
                index = self._parse_expression()
                end = self._consume(TokenType.RBRACKET, "']'")
                expr = IndexAccess(
                    span=SourceSpan(expr.span.start, end.span.end),
                    object=expr,
                    index=index,
                )
            elif (self._check_any(TokenType.INCREMENT, TokenType.DECREMENT)
                  and isinstance(expr, (Identifier, MemberAccess, IndexAccess))):
                op = self._advance()
                expr = UpdateExpr(
                    span=SourceSpan(expr.span.start, op.span.end),
                    operator=op.type,
                    target=expr,
                    prefix=False,
                )
            else:
                break

        return expr

    def _parse_call(self, callee: Expression) -> Call:
        """Parse function call arguments."""
        args = self._parse_arguments()
        return Call(
            span=SourceSpan(callee.span.start, self.tokens[self.pos - 1].span.end),
            callee=callee,
            arguments=args,
        )

    def _parse_arguments(self) -> List[Expression]:
        """Parse a parenthesised argument list."""
        self._consume(TokenType.LPAREN, "'('")
        args = []
        if not self._check(TokenType.RPAREN):
            args.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                if self._check(TokenType.RPAREN):
                    break  # Allow trailing comma
                args.append(self._parse_expression())
        self._consume(TokenType.RPAREN, "')'")
        return args

    def _parse_primary_expr(self) -> Expression:
        """Parse primary expressions."""
        token = self._current()

        if token.type in (TokenType.NUMBER, TokenType.STRING, TokenType.TRUE,
                          TokenType.FALSE, TokenType.NULL):
            self._advance()
            return Literal(span=token.span, value=token.value, literal_type=token.type)

        if token.type == TokenType.IDENTIFIER:
            self._advance()
            return Identifier(span=token.span, name=token.value)

        if token.type == TokenType.LPAREN:
            self._advance()
            expr = self._parse_expression()
            self._consume(TokenType.RPAREN, "')'")
            return expr

        if token.type == TokenType.LBRACKET:
            return self._parse_array_literal()

        if token.type == TokenType.DOT and self._peek(1).type == TokenType.LBRACE:
            return self._parse_object_literal()

        if token.type == TokenType.LBRACE:
            return self._parse_block()

        if token.type == TokenType.IF:
            return self._parse_if_expr()

        if token.type == TokenType.MATCH:
            return self._parse_match_expr()

        if token.type == TokenType.TRY:
            return self._parse_try_expr()

        if token.type in (TokenType.WHILE, TokenType.UNTIL):
            start = self._advance()
            condition = self._parse_expression()
            body = self._parse_block()
            return WhileLoop(
                span=self._span_from(start),
                condition=condition,
                body=body,
                negate=start.type == TokenType.UNTIL,
            )

        if token.type == TokenType.LOOP:
            start = self._advance()
            body = self._parse_block()
            return LoopExpr(span=self._span_from(start), body=body)

        if token.type == TokenType.FOR:
            return self._parse_for_expr()

        if token.type in (TokenType.FUNC, TokenType.PURE):
            return self._parse_function_def()

        self._error("expression")

    def _parse_array_literal(self) -> ArrayLiteral:
        start = self._advance()  # consume '['
        elements = []
        if not self._check(TokenType.RBRACKET):
            elements.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                if self._check(TokenType.RBRACKET):
                    break
                elements.append(self._parse_expression())
        self._consume(TokenType.RBRACKET, "']'")
        return ArrayLiteral(span=self._span_from(start), elements=elements)

    def _parse_object_literal(self) -> ObjectLiteral:
        """Parse .{ key: value, "quoted": value, shorthand }."""
        start = self._advance()  # consume '.'
        self._advance()  # consume '{'
        entries = []
        while not self._check(TokenType.RBRACE):
            key_token = self._current()
            if key_token.type == TokenType.STRING:
                self._advance()
                self._consume(TokenType.COLON, "':'")
                value = self._parse_expression()
            elif key_token.type == TokenType.IDENTIFIER:
                self._advance()
                if self._match(TokenType.COLON):
                    value = self._parse_expression()
                else:
                    value = Identifier(span=key_token.span, name=key_token.value)
            else:
                self._error("object key")
            entries.append(ObjectEntry(
                span=self._span_from(key_token), key=key_token.value, value=value,
            ))
            if not self._match(TokenType.COMMA):
                break
        self._consume(TokenType.RBRACE, "'}'")
        return ObjectLiteral(span=self._span_from(start), entries=entries)

    def _parse_block(self) -> Block:
        """Parse a braced block: { stmt; stmt; expr }."""
        start = self._consume(TokenType.LBRACE, "'{'")
        statements = []
        self._skip_semicolons()
        while not self._check(TokenType.RBRACE):
            if self._is_at_end():
                self._error("'}'")
            statements.append(self._parse_statement())
            self._skip_semicolons()
        self._consume(TokenType.RBRACE, "'}'")
        return Block(span=self._span_from(start), statements=statements)

    def _parse_if_expr(self) -> IfExpr:
        start = self._advance()  # consume 'if'
        condition = self._parse_expression()
        then_branch = self._parse_block()
        else_branch = None
        if self._match(TokenType.ELSE):
            if self._check(TokenType.IF):
                else_branch = self._parse_if_expr()
            else:
                else_branch = self._parse_block()
        return IfExpr(
            span=self._span_from(start),
            condition=condition,
            then_branch=then_branch,
            else_branch=else_branch,
        )

    def _parse_match_expr(self) -> MatchExpr:
        start = self._advance()  # consume 'match'
        subject = self._parse_expression()
        self._consume(TokenType.LBRACE, "'{'")

        arms = []
        seen_else = False
        while not self._check(TokenType.RBRACE):
            if seen_else:
                token = self._current()
                raise error_else_arm_not_last(
                    token.span, self._source_line(token.span.start.line)
                )
            arm = self._parse_match_arm()
            seen_else = arm.kind == "else"
            arms.append(arm)
            self._match(TokenType.COMMA)

        self._consume(TokenType.RBRACE, "'}'")
        return MatchExpr(span=self._span_from(start), subject=subject, arms=arms)

    def _parse_match_arm(self) -> MatchArm:
        start = self._current()

        if self._match(TokenType.ELSE):
            body = self._parse_block()
            return MatchArm(span=self._span_from(start), kind="else", body=body)

        if self._match(TokenType.IS):
            pattern = self._parse_binary_expr(self.PRECEDENCE[TokenType.RANGE])
            body = self._parse_block()
            return MatchArm(span=self._span_from(start), kind="is", body=body, pattern=pattern)

        if self._current().type in COMPARISON_OPERATORS:
            op = self._advance()
            pattern = self._parse_binary_expr(self.PRECEDENCE[TokenType.RANGE])
            body = self._parse_block()
            return MatchArm(span=self._span_from(start), kind="comparison", body=body,
                            pattern=pattern, operator=op.type)

        pattern = self._parse_binary_expr(1)
        body = self._parse_block()
        return MatchArm(span=self._span_from(start), kind="equality", body=body, pattern=pattern)

    def _parse_try_expr(self) -> TryCatch:
        start = self._advance()  # consume 'try'
        try_block = self._parse_block()
        catch_name = None
        catch_block = None
        finally_block = None

        if self._match(TokenType.CATCH):
            if self._check(TokenType.IDENTIFIER):
                catch_name = self._advance().value
            catch_block = self._parse_block()
        if self._match(TokenType.FINALLY):
            finally_block = self._parse_block()
        if catch_block is None and finally_block is None:
            self._error("'catch' or 'finally'")

        return TryCatch(
            span=self._span_from(start),
            try_block=try_block,
            catch_name=catch_name,
            catch_block=catch_block,
            finally_block=finally_block,
        )

    def _parse_for_expr(self) -> ForIn:
        """Parse 'for x in v { }' or 'for i, x in v { }'."""
        start = self._advance()  # consume 'for'
        first = self._consume(TokenType.IDENTIFIER, "loop variable").value
        index_name = None
        value_name = first
        if self._match(TokenType.COMMA):
            index_name = first
            value_name = self._consume(TokenType.IDENTIFIER, "loop variable").value
        self._consume(TokenType.IN, "'in'")
        iterable = self._parse_expression()
        body = self._parse_block()
        return ForIn(
            span=self._span_from(start),
            index_name=index_name,
            value_name=value_name,
            iterable=iterable,
            body=body,
        )

    # =========================================================================
    # Functions
    # =========================================================================

    def _parse_function_def(self) -> FunctionDef:
        """
        Parse a function:

            func name(a, b: is_number?, c: in_range(0, 9), __args__) where a > 0 { ... }
            func pure name(...) { ... }
            pure func name(...) { ... }
            func (x) { ... }
        """
        start = self._current()
        is_pure = False
        if self._match(TokenType.PURE):
            is_pure = True
            self._consume(TokenType.FUNC, "'func'")
        else:
            self._consume(TokenType.FUNC, "'func'")
            if self._match(TokenType.PURE):
                is_pure = True

        name = None
        if self._check(TokenType.IDENTIFIER):
            name = self._advance().value

        self._consume(TokenType.LPAREN, "'('")
        parameters: List[Parameter] = []
        if not self._check(TokenType.RPAREN):
            parameters.append(self._parse_parameter())
            while self._match(TokenType.COMMA):
                if self._check(TokenType.RPAREN):
                    break
                parameters.append(self._parse_parameter())
        self._consume(TokenType.RPAREN, "')'")

        variadic = [p for p in parameters if p.name == VARIADIC_NAME]
        if len(variadic) > 1:
            raise error_duplicate_variadic(
                variadic[1].span, self._source_line(variadic[1].span.start.line)
            )

        where_clauses = []
        if self._match(TokenType.WHERE):
            where_clauses.append(self._parse_expression())
            while self._match(TokenType.COMMA):
                where_clauses.append(self._parse_expression())

        body = self._parse_block()
        return FunctionDef(
            span=self._span_from(start),
            name=name,
            parameters=parameters,
            body=body,
            where_clauses=where_clauses,
            is_pure=is_pure,
        )

    def _parse_parameter(self) -> Parameter:
        """Parse 'name' or 'name: predicate' or 'name: predicate(extra, args)'."""
        token = self._consume(TokenType.IDENTIFIER, "parameter name")
        predicate = None
        predicate_args: List[Expression] = []
        if self._match(TokenType.COLON):
            annotation = self._parse_postfix_expr()
            if isinstance(annotation, Call):
                predicate = annotation.callee
                predicate_args = annotation.arguments
            else:
                predicate = annotation
        return Parameter(
            span=self._span_from(token),
            name=token.value,
            predicate=predicate,
            predicate_args=predicate_args,
        )


def parse(tokens: List[Token], filename: Optional[str] = None, source: Optional[str] = None) -> Program:
    """
    Convenience function to parse tokens into a Program.

    Args:
        tokens: List of tokens from lexer
        filename: Optional filename for error messages
        source: Optional original source text, used for error excerpts

    Returns:
        Program AST node

    Raises:
        ParserError: If parsing fails
    """
    parser = Parser(tokens, filename, source)
    return parser.parse_program()


def parse_source(source: str, filename: Optional[str] = None) -> Program:
    """Tokenize and parse source text in one step."""
    from .lexer import tokenize
    return parse(tokenize(source, filename), filename, source)
