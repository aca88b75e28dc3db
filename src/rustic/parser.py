import logging

import ply.lex as lex
import ply.yacc as yacc

import rustic.rustic_ast as ast
from rustic.errors import LexError, LexErrorKind, ParseError, SourceLocation
from rustic.lexer import I64_MAX, Lexer, Token, TokenKind, describe_token_type

logger = logging.getLogger(__name__)


class _TokenStream:
    """Feeds rustic Tokens to ply.yacc in the shape of ply LexTokens"""

    def __init__(self, tokens):
        self._tokens = tokens
        self.eof = None

    def token(self):
        tok = next(self._tokens, None)
        if tok is None or tok.kind is TokenKind.EOF:
            if tok is not None:
                self.eof = tok
            return None
        lex_token = lex.LexToken()
        lex_token.type = tok.type
        lex_token.value = tok
        lex_token.lineno = tok.position.line
        lex_token.lexpos = tok.position.offset
        return lex_token


class Parser:
    start = 'module'

    tokens = Lexer.tokens

    precedence = (
        ('left', 'OROR'),
        ('left', 'ANDAND'),
        ('nonassoc', 'EQEQ', 'NOTEQ', 'LT', 'LE', 'GT', 'GE'),
        ('left', 'PLUS', 'MINUS'),
        ('left', 'TIMES', 'DIVIDE', 'MOD'),
        ('right', 'UMINUS', 'NOT'),
    )

    def __init__(self):
        self.lexer = Lexer()
        self.parser = yacc.yacc(module=self, write_tables=False, debug=False,
                                errorlog=yacc.NullLogger())
        self.file_path = "<string>"
        self._stream = None

    def parse(self, source: str, module_name: str = "main",
              file_path: str = "<string>") -> ast.Module:
        """Parse a whole compilation unit. Raises LexError or ParseError."""
        self.file_path = file_path
        self._stream = _TokenStream(self.lexer.tokenize(source, file_path))
        module = self.parser.parse(lexer=self._stream)
        self._check_int_literals(module)
        module.name = module_name
        logger.debug(f"Parsed {file_path}: {len(module.items)} items")
        return module

    # --- helpers ---

    def _check_int_literals(self, module: ast.Module):
        negated = set()
        for node in module.walk():
            if isinstance(node, ast.UnaryExpr) and node.operator == '-':
                negated.add(id(node.operand))
            elif (isinstance(node, ast.Literal) and node.kind == 'int'
                  and node.value > I64_MAX and id(node) not in negated):
                raise LexError(
                    message=f"Integer literal '{node.value}' does not fit in 64 bits",
                    location=node.location,
                    kind=LexErrorKind.MALFORMED_NUMBER,
                )

    def _loc(self, p, n) -> SourceLocation:
        value = p[n]
        if isinstance(value, Token):
            return value.position
        return value.location

    def _fail(self, message, expected, found, location):
        raise ParseError(message=message, expected=expected, found=found,
                         location=location)

    # --- module level ---

    def p_module(self, p):
        '''module : item_list'''
        items = p[1]
        location = items[0].location if items else SourceLocation(self.file_path, 1, 1)
        p[0] = ast.Module(None, items, location=location)

    def p_item_list(self, p):
        '''item_list : item_list item
                     | empty'''
        if len(p) == 3:
            p[0] = p[1] + [p[2]]
        else:
            p[0] = []

    def p_item(self, p):
        '''item : import_decl
                | struct_decl
                | fn_decl'''
        p[0] = p[1]

    def p_import_decl(self, p):
        '''import_decl : IMPORT module_path SEMI
                       | IMPORT module_path AS IDENTIFIER SEMI'''
        alias = p[4].lexeme if len(p) == 6 else None
        p[0] = ast.Import(p[2], alias, location=self._loc(p, 1))

    def p_module_path(self, p):
        '''module_path : IDENTIFIER
                       | module_path DOT IDENTIFIER'''
        if len(p) == 2:
            p[0] = [p[1].lexeme]
        else:
            p[0] = p[1] + [p[3].lexeme]

    def p_struct_decl(self, p):
        '''struct_decl : STRUCT IDENTIFIER LBRACE field_decls RBRACE'''
        p[0] = ast.StructDecl(p[2].lexeme, p[4], location=self._loc(p, 2))

    def p_field_decls(self, p):
        '''field_decls : field_decl_list
                       | field_decl_list COMMA
                       | empty'''
        p[0] = p[1] or []

    def p_field_decl_list(self, p):
        '''field_decl_list : field_decl
                           | field_decl_list COMMA field_decl'''
        if len(p) == 2:
            p[0] = [p[1]]
        else:
            p[0] = p[1] + [p[3]]

    def p_field_decl(self, p):
        '''field_decl : IDENTIFIER COLON type_name'''
        p[0] = ast.FieldDecl(p[1].lexeme, p[3], location=self._loc(p, 1))

    def p_type_name(self, p):
        '''type_name : IDENTIFIER'''
        p[0] = ast.TypeName(p[1].lexeme, location=self._loc(p, 1))

    def p_fn_decl(self, p):
        '''fn_decl : FN IDENTIFIER LPAREN params RPAREN return_type block'''
        p[0] = ast.FnDecl(p[2].lexeme, p[4], p[6], p[7], location=self._loc(p, 2))

    def p_params(self, p):
        '''params : param_list
                  | empty'''
        p[0] = p[1] or []

    def p_param_list(self, p):
        '''param_list : param
                      | param_list COMMA param'''
        if len(p) == 2:
            p[0] = [p[1]]
        else:
            p[0] = p[1] + [p[3]]

    def p_param(self, p):
        '''param : IDENTIFIER COLON type_name'''
        p[0] = ast.Param(p[1].lexeme, p[3], location=self._loc(p, 1))

    def p_return_type(self, p):
        '''return_type : ARROW type_name
                       | empty'''
        p[0] = p[2] if len(p) == 3 else None

    # --- statements ---

    def p_block(self, p):
        '''block : LBRACE stmt_list RBRACE'''
        p[0] = ast.Block(p[2], location=self._loc(p, 1))

    def p_stmt_list(self, p):
        '''stmt_list : stmt_list stmt
                     | empty'''
        if len(p) == 3:
            p[0] = p[1] + [p[2]]
        else:
            p[0] = []

    def p_stmt(self, p):
        '''stmt : let_stmt
                | assign_stmt
                | return_stmt
                | if_stmt
                | while_stmt
                | expr_stmt
                | block'''
        p[0] = p[1]

    def p_let_stmt(self, p):
        '''let_stmt : LET IDENTIFIER EQUALS expression SEMI
                    | LET IDENTIFIER COLON type_name EQUALS expression SEMI'''
        if len(p) == 6:
            p[0] = ast.LetStmt(p[2].lexeme, None, p[4], location=self._loc(p, 2))
        else:
            p[0] = ast.LetStmt(p[2].lexeme, p[4], p[6], location=self._loc(p, 2))

    def p_assign_stmt(self, p):
        '''assign_stmt : postfix EQUALS expression SEMI'''
        target = p[1]
        root = ast.place_root(target)
        if root is None or root.explicit_move:
            self._fail("Left-hand side of an assignment must be a variable or a field",
                       ['identifier'], 'expression', target.location)
        p[0] = ast.AssignStmt(target, p[3], location=self._loc(p, 2))

    def p_return_stmt(self, p):
        '''return_stmt : RETURN expression SEMI
                       | RETURN SEMI'''
        value = p[2] if len(p) == 4 else None
        p[0] = ast.ReturnStmt(value, location=self._loc(p, 1))

    def p_if_stmt(self, p):
        '''if_stmt : IF cond_expression block else_clause'''
        p[0] = ast.IfStmt(p[2], p[3], p[4], location=self._loc(p, 1))

    def p_else_clause(self, p):
        '''else_clause : ELSE block
                       | ELSE if_stmt
                       | empty'''
        p[0] = p[2] if len(p) == 3 else None

    def p_while_stmt(self, p):
        '''while_stmt : WHILE cond_expression block'''
        p[0] = ast.WhileStmt(p[2], p[3], location=self._loc(p, 1))

    def p_expr_stmt(self, p):
        '''expr_stmt : expression SEMI'''
        p[0] = ast.ExprStmt(p[1], location=p[1].location)

    # --- expressions ---
    # cond_* mirrors expression but never admits a bare struct literal,
    # so the brace after `if x` / `while x` opens the block.

    def _binary(self, p):
        return ast.BinaryExpr(p[1], p[2].lexeme, p[3], location=self._loc(p, 2))

    def _unary(self, p):
        return ast.UnaryExpr(p[1].lexeme, p[2], location=self._loc(p, 1))

    def _field_access(self, p):
        return ast.FieldAccessExpr(p[1], p[3].lexeme, location=self._loc(p, 3))

    def _call(self, p):
        callee, args = p[1], p[3]
        if isinstance(callee, ast.Identifier) and not callee.explicit_move:
            return ast.CallExpr(None, callee.name, args, location=callee.location)
        if (isinstance(callee, ast.FieldAccessExpr)
                and isinstance(callee.receiver, ast.Identifier)
                and not callee.receiver.explicit_move):
            return ast.CallExpr(callee.receiver.name, callee.field, args,
                                location=callee.receiver.location)
        self._fail("Only `name(...)` and `module.name(...)` can be called",
                   ['identifier'], "'('", self._loc(p, 2))

    def p_expression_binary(self, p):
        '''expression : expression OROR expression
                      | expression ANDAND expression
                      | expression EQEQ expression
                      | expression NOTEQ expression
                      | expression LT expression
                      | expression LE expression
                      | expression GT expression
                      | expression GE expression
                      | expression PLUS expression
                      | expression MINUS expression
                      | expression TIMES expression
                      | expression DIVIDE expression
                      | expression MOD expression'''
        p[0] = self._binary(p)

    def p_expression_unary(self, p):
        '''expression : MINUS expression %prec UMINUS
                      | NOT expression'''
        p[0] = self._unary(p)

    def p_expression_postfix(self, p):
        '''expression : postfix'''
        p[0] = p[1]

    def p_postfix(self, p):
        '''postfix : primary
                   | struct_literal'''
        p[0] = p[1]

    def p_postfix_field(self, p):
        '''postfix : postfix DOT IDENTIFIER'''
        p[0] = self._field_access(p)

    def p_postfix_call(self, p):
        '''postfix : postfix LPAREN args RPAREN'''
        p[0] = self._call(p)

    def p_cond_expression_binary(self, p):
        '''cond_expression : cond_expression OROR cond_expression
                           | cond_expression ANDAND cond_expression
                           | cond_expression EQEQ cond_expression
                           | cond_expression NOTEQ cond_expression
                           | cond_expression LT cond_expression
                           | cond_expression LE cond_expression
                           | cond_expression GT cond_expression
                           | cond_expression GE cond_expression
                           | cond_expression PLUS cond_expression
                           | cond_expression MINUS cond_expression
                           | cond_expression TIMES cond_expression
                           | cond_expression DIVIDE cond_expression
                           | cond_expression MOD cond_expression'''
        p[0] = self._binary(p)

    def p_cond_expression_unary(self, p):
        '''cond_expression : MINUS cond_expression %prec UMINUS
                           | NOT cond_expression'''
        p[0] = self._unary(p)

    def p_cond_expression_postfix(self, p):
        '''cond_expression : cond_postfix'''
        p[0] = p[1]

    def p_cond_postfix(self, p):
        '''cond_postfix : primary'''
        p[0] = p[1]

    def p_cond_postfix_field(self, p):
        '''cond_postfix : cond_postfix DOT IDENTIFIER'''
        p[0] = self._field_access(p)

    def p_cond_postfix_call(self, p):
        '''cond_postfix : cond_postfix LPAREN args RPAREN'''
        p[0] = self._call(p)

    def p_args(self, p):
        '''args : arg_list
                | empty'''
        p[0] = p[1] or []

    def p_arg_list(self, p):
        '''arg_list : expression
                    | arg_list COMMA expression'''
        if len(p) == 2:
            p[0] = [p[1]]
        else:
            p[0] = p[1] + [p[3]]

    def p_primary_literal(self, p):
        '''primary : INT_LITERAL
                   | FLOAT_LITERAL
                   | STRING_LITERAL
                   | TRUE
                   | FALSE'''
        token = p[1]
        kind = {
            'INT_LITERAL': 'int',
            'FLOAT_LITERAL': 'float',
            'STRING_LITERAL': 'string',
        }.get(token.type, 'bool')
        p[0] = ast.Literal(token.value, kind, location=token.position)

    def p_primary_identifier(self, p):
        '''primary : IDENTIFIER'''
        p[0] = ast.Identifier(p[1].lexeme, location=self._loc(p, 1))

    def p_primary_move(self, p):
        '''primary : MOVE LPAREN IDENTIFIER RPAREN'''
        p[0] = ast.Identifier(p[3].lexeme, explicit_move=True, location=self._loc(p, 3))

    def p_primary_group(self, p):
        '''primary : LPAREN expression RPAREN'''
        p[0] = p[2]

    def p_struct_literal(self, p):
        '''struct_literal : IDENTIFIER LBRACE field_inits RBRACE'''
        p[0] = ast.StructLiteralExpr(p[1].lexeme, p[3], location=self._loc(p, 1))

    def p_field_inits(self, p):
        '''field_inits : field_init_list
                       | field_init_list COMMA
                       | empty'''
        p[0] = p[1] or []

    def p_field_init_list(self, p):
        '''field_init_list : field_init
                           | field_init_list COMMA field_init'''
        if len(p) == 2:
            p[0] = [p[1]]
        else:
            p[0] = p[1] + [p[3]]

    def p_field_init(self, p):
        '''field_init : IDENTIFIER COLON expression'''
        p[0] = ast.FieldInit(p[1].lexeme, p[3], location=self._loc(p, 1))

    def p_empty(self, p):
        '''empty :'''
        p[0] = None

    def p_error(self, p):
        actions = self.parser.action[self.parser.state]
        # Non-associative operators leave a None action behind
        expected = sorted(
            describe_token_type(t)
            for t, action in actions.items()
            if t != 'error' and action is not None
        )
        if p is not None:
            token = p.value
            found, location = str(token), token.position
        else:
            eof = self._stream.eof
            found = "end of input"
            location = eof.position if eof else SourceLocation(self.file_path, 1, 1)
        message = f"Unexpected {found}"
        if expected:
            message += f", expected one of: {', '.join(expected)}"
        self._fail(message, expected, found, location)
