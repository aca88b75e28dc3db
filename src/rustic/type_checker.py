import logging
from typing import Dict, List, Optional, Tuple

import rustic.rustic_ast as ast
from rustic.errors import (
    ArityError, DuplicateDeclarationError, RecursiveStructError,
    TypeMismatchError, UnknownFieldError, UnresolvedNameError,
)
from rustic.rustic_ast import (
    BOOL, FLOAT, INT, PRIMITIVES, UNRESOLVED, VOID,
    StructType, Type, UnresolvedType,
)
from rustic.stdlib_map import MappingTable
from rustic.symbol_table import SymbolKind, SymbolTable

logger = logging.getLogger(__name__)

ARITHMETIC_OPS = ('+', '-', '*', '/')
ORDERING_OPS = ('<', '<=', '>', '>=')
EQUALITY_OPS = ('==', '!=')
LOGICAL_OPS = ('&&', '||')


def exported_structs(unit) -> List[Tuple[ast.StructDecl, str]]:
    """Structs a compiled unit exposes, paired with their defining module.

    These are the unit's own structs plus every struct reachable from their
    fields or from its function signatures, which may come from the unit's
    own dependencies.
    """
    visible = {s.name: s for s in unit.symbol_table.symbols if s.kind is SymbolKind.STRUCT}
    found: Dict[str, Tuple[ast.StructDecl, str]] = {}

    def reach(t):
        if not isinstance(t, StructType) or t.name in found:
            return
        symbol = visible[t.name]
        found[t.name] = (symbol.node, symbol.origin or unit.name)
        for field_decl in symbol.node.fields:
            reach(field_decl.type)

    for struct in unit.module.structs:
        reach(StructType(struct.name))
    for fn in unit.module.functions:
        for param in fn.params:
            reach(param.type)
        reach(fn.returns)
    return list(found.values())


class TypeChecker:
    """Resolves names and assigns a Type to every expression of a module.

    Annotates the tree in place: expressions get `.type`, identifiers,
    lets, params and declarations get `.symbol_id`, and calls record what
    they resolved to.
    """

    def __init__(self, table: MappingTable, dependencies=None):
        self.table = table
        # module name -> compiled unit exposing `.module`
        self.dependencies = dependencies or {}
        self.symbol_table = SymbolTable()
        self.structs: Dict[str, ast.StructDecl] = {}
        self.struct_origins: Dict[str, str] = {}  # imported struct -> defining module
        self.current_function: Optional[ast.FnDecl] = None

    def check_module(self, module: ast.Module) -> SymbolTable:
        """Type check a module"""
        self.symbol_table.enter_scope()
        for imp in module.imports:
            self.declare_import(imp)
        for imp in module.imports:
            self.declare_dependency_structs(imp)
        for struct in module.structs:
            symbol = self.symbol_table.declare(
                struct.name, SymbolKind.STRUCT, StructType(struct.name), struct, struct.location)
            struct.symbol_id = symbol.id
            self.structs[struct.name] = struct
        for struct in module.structs:
            self.check_struct_fields(struct)
        self.check_struct_cycles(module.structs)
        for fn in module.functions:
            self.declare_function(fn)
        for fn in module.functions:
            self.check(fn)
        self.symbol_table.exit_scope()
        logger.debug(f"Resolved {module.name}: {len(self.symbol_table.symbols)} symbols")
        return self.symbol_table

    def check(self, node):
        method = getattr(self, f'visit_{node.__class__.__name__}', None)
        if method is None:
            raise NotImplementedError(f"No type rule for {node.__class__.__name__}")
        return method(node)

    # --- declarations ---

    def declare_import(self, imp: ast.Import):
        self.symbol_table.declare(imp.qualifier, SymbolKind.MODULE, None, imp, imp.location)

    def declare_dependency_structs(self, imp: ast.Import):
        unit = self.dependencies.get(imp.module_name)
        if unit is None:
            return
        for struct, origin in exported_structs(unit):
            if self.struct_origins.get(struct.name) == origin:
                continue  # Reached through another import as well
            symbol = self.symbol_table.declare(
                struct.name, SymbolKind.STRUCT, StructType(struct.name), struct, imp.location)
            symbol.origin = origin
            self.structs[struct.name] = struct
            self.struct_origins[struct.name] = origin

    def resolve_type(self, type_name: ast.TypeName, allow_void: bool = False) -> Type:
        if type_name.name in PRIMITIVES:
            resolved = PRIMITIVES[type_name.name]
            if resolved == VOID and not allow_void:
                raise TypeMismatchError(
                    message="'void' cannot be the type of a value",
                    location=type_name.location,
                    expected="a value type",
                    found="void",
                )
            return resolved
        if type_name.name in self.structs:
            return StructType(type_name.name)
        raise UnresolvedNameError(
            message=f"Unknown type '{type_name.name}'",
            location=type_name.location,
            name=type_name.name,
        )

    def check_struct_fields(self, struct: ast.StructDecl):
        seen = set()
        for field_decl in struct.fields:
            if field_decl.name in seen:
                raise DuplicateDeclarationError(
                    message=f"Field '{field_decl.name}' is declared twice in struct '{struct.name}'",
                    location=field_decl.location,
                )
            seen.add(field_decl.name)
            field_decl.type = self.resolve_type(field_decl.type_name)

    def check_struct_cycles(self, structs: List[ast.StructDecl]):
        """Reject structs that contain themselves directly or through other structs"""
        done = set()

        def visit(struct, path):
            if struct.name in path:
                cycle = path[path.index(struct.name):] + [struct.name]
                raise RecursiveStructError(
                    message=f"Recursive struct: {' -> '.join(cycle)}",
                    location=self.structs[cycle[0]].location,
                    cycle=cycle,
                    notes=["A struct cannot contain itself, even through another struct"],
                )
            if struct.name in done:
                return
            path.append(struct.name)
            for field_decl in struct.fields:
                if isinstance(field_decl.type, StructType):
                    visit(self.structs[field_decl.type.name], path)
            path.pop()
            done.add(struct.name)

        for struct in structs:
            visit(struct, [])

    def declare_function(self, fn: ast.FnDecl):
        param_types = [self.resolve_type(param.type_name) for param in fn.params]
        if fn.return_type is None:
            returns = VOID
        else:
            returns = self.resolve_type(fn.return_type, allow_void=True)
        symbol = self.symbol_table.declare(fn.name, SymbolKind.FUNCTION, returns, fn, fn.location)
        symbol.param_types = param_types
        symbol.return_type = returns
        fn.symbol_id = symbol.id
        fn.returns = returns
        for param, param_type in zip(fn.params, param_types):
            param.type = param_type

    # --- functions and statements ---

    def visit_FnDecl(self, node: ast.FnDecl):
        self.current_function = node
        self.symbol_table.enter_scope()
        for param in node.params:
            symbol = self.symbol_table.declare(
                param.name, SymbolKind.PARAM, param.type, param, param.location)
            param.symbol_id = symbol.id
        self.check(node.body)
        self.symbol_table.exit_scope()
        if node.returns != VOID and not self.always_returns(node.body):
            raise TypeMismatchError(
                message=f"Function '{node.name}' does not return a value on every path",
                location=node.location,
                expected=str(node.returns),
                found="void",
            )
        self.current_function = None

    def always_returns(self, stmt) -> bool:
        if isinstance(stmt, ast.ReturnStmt):
            return True
        if isinstance(stmt, ast.Block):
            return any(self.always_returns(s) for s in stmt.statements)
        if isinstance(stmt, ast.IfStmt):
            return (stmt.else_branch is not None
                    and self.always_returns(stmt.then_block)
                    and self.always_returns(stmt.else_branch))
        return False

    def visit_Block(self, node: ast.Block):
        self.symbol_table.enter_scope()
        for stmt in node.statements:
            self.check(stmt)
        self.symbol_table.exit_scope()

    def visit_LetStmt(self, node: ast.LetStmt):
        init_type = self.check(node.initializer)
        if node.type_annotation is not None:
            declared = self.resolve_type(node.type_annotation)
            self.expect_assignable(declared, node.initializer)
        else:
            if init_type == VOID:
                raise TypeMismatchError(
                    message=f"Cannot bind '{node.name}' to an expression of type void",
                    location=node.initializer.location,
                    expected="a value type",
                    found="void",
                )
            declared = init_type
        node.type = declared
        symbol = self.symbol_table.declare(
            node.name, SymbolKind.LOCAL, declared, node, node.location)
        node.symbol_id = symbol.id

    def visit_AssignStmt(self, node: ast.AssignStmt):
        target_type = self.check(node.target)
        self.check(node.value)
        self.expect_assignable(target_type, node.value)

    def visit_ReturnStmt(self, node: ast.ReturnStmt):
        expected = self.current_function.returns
        if node.value is None:
            if expected != VOID:
                raise TypeMismatchError(
                    message=f"Missing return value of type {expected}",
                    location=node.location,
                    expected=str(expected),
                    found="void",
                )
            return
        found = self.check(node.value)
        if expected == VOID:
            raise TypeMismatchError(
                message=f"Function '{self.current_function.name}' does not return a value",
                location=node.value.location,
                expected="void",
                found=str(found),
            )
        self.expect_assignable(expected, node.value)

    def visit_IfStmt(self, node: ast.IfStmt):
        self.expect_condition(node.condition)
        self.check(node.then_block)
        if node.else_branch is not None:
            self.check(node.else_branch)

    def visit_WhileStmt(self, node: ast.WhileStmt):
        self.expect_condition(node.condition)
        self.check(node.body)

    def visit_ExprStmt(self, node: ast.ExprStmt):
        self.check(node.expr)

    # --- expressions ---

    def visit_Literal(self, node: ast.Literal) -> Type:
        node.type = PRIMITIVES[node.kind]
        return node.type

    def visit_Identifier(self, node: ast.Identifier) -> Type:
        symbol = self.symbol_table.resolve(node.name, node.location)
        if not symbol.is_binding():
            raise TypeMismatchError(
                message=f"'{node.name}' is a {symbol.kind.value}, not a value",
                location=node.location,
                expected="a variable",
                found=symbol.kind.value,
            )
        node.symbol_id = symbol.id
        node.type = self.symbol_table.type_of(symbol.id)
        return node.type

    def visit_BinaryExpr(self, node: ast.BinaryExpr) -> Type:
        left = self.check(node.left)
        right = self.check(node.right)
        op = node.operator
        if op in ARITHMETIC_OPS or op in ORDERING_OPS or op == '%':
            numeric = (INT,) if op == '%' else (INT, FLOAT)
            self.expect_operand(node.left, numeric)
            self.expect_same(node.left, node.right)
            self.expect_operand(node.right, numeric)
            result = left if op in ARITHMETIC_OPS or op == '%' else BOOL
            if isinstance(result, UnresolvedType):
                result = right
        elif op in EQUALITY_OPS:
            for operand in (node.left, node.right):
                if operand.type == VOID:
                    raise TypeMismatchError(
                        message=f"Cannot compare a void value with '{op}'",
                        location=operand.location,
                        expected="a value type",
                        found="void",
                    )
            self.expect_same(node.left, node.right)
            result = BOOL
        else:
            self.expect_operand(node.left, (BOOL,))
            self.expect_operand(node.right, (BOOL,))
            result = BOOL
        node.type = result
        return result

    def visit_UnaryExpr(self, node: ast.UnaryExpr) -> Type:
        operand = self.check(node.operand)
        if node.operator == '-':
            self.expect_operand(node.operand, (INT, FLOAT))
        else:
            self.expect_operand(node.operand, (BOOL,))
        node.type = operand if node.operator == '-' else BOOL
        return node.type

    def visit_FieldAccessExpr(self, node: ast.FieldAccessExpr) -> Type:
        receiver = self.check(node.receiver)
        if isinstance(receiver, UnresolvedType):
            node.type = UNRESOLVED
            return node.type
        struct = self.structs.get(receiver.name) if isinstance(receiver, StructType) else None
        field_decl = struct.field(node.field) if struct else None
        if field_decl is None:
            raise UnknownFieldError(
                message=f"Type '{receiver}' has no field '{node.field}'",
                location=node.location,
            )
        node.type = field_decl.type
        return node.type

    def visit_StructLiteralExpr(self, node: ast.StructLiteralExpr) -> Type:
        struct = self.structs.get(node.name)
        if struct is None:
            raise UnresolvedNameError(
                message=f"Unknown struct '{node.name}'",
                location=node.location,
                name=node.name,
            )
        seen = set()
        for init in node.fields:
            field_decl = struct.field(init.name)
            if field_decl is None:
                raise UnknownFieldError(
                    message=f"Struct '{node.name}' has no field '{init.name}'",
                    location=init.location,
                )
            if init.name in seen:
                raise DuplicateDeclarationError(
                    message=f"Field '{init.name}' is initialized twice",
                    location=init.location,
                )
            seen.add(init.name)
            self.check(init.value)
            self.expect_assignable(field_decl.type, init.value)
        missing = [f.name for f in struct.fields if f.name not in seen]
        if missing:
            raise TypeMismatchError(
                message=f"Missing field(s) {', '.join(missing)} in '{node.name}' literal",
                location=node.location,
                expected=node.name,
                found=f"{node.name} without {', '.join(missing)}",
            )
        node.type = StructType(node.name)
        return node.type

    def visit_CallExpr(self, node: ast.CallExpr) -> Type:
        arg_types = [self.check(arg) for arg in node.args]
        if node.module is None:
            return self.check_function_call(node)
        symbol = self.symbol_table.lookup(node.module)
        if symbol is None or symbol.kind is not SymbolKind.MODULE:
            raise UnresolvedNameError(
                message=f"'{node.module}' is not an imported module",
                location=node.location,
                name=node.module,
            )
        imp = symbol.node
        unit = self.dependencies.get(imp.module_name)
        if unit is not None:
            return self.check_dependency_call(node, imp, unit)
        return self.check_builtin_call(node, imp, arg_types)

    def check_function_call(self, node: ast.CallExpr) -> Type:
        symbol = self.symbol_table.resolve(node.name, node.location)
        if symbol.kind is not SymbolKind.FUNCTION:
            raise TypeMismatchError(
                message=f"'{node.name}' is not a function",
                location=node.location,
                expected="function",
                found=symbol.kind.value,
            )
        self.check_arguments(node, symbol.param_types)
        node.target_kind = 'function'
        node.symbol_id = symbol.id
        node.type = symbol.return_type
        return node.type

    def check_dependency_call(self, node: ast.CallExpr, imp: ast.Import, unit) -> Type:
        fn = next((f for f in unit.module.functions if f.name == node.name), None)
        if fn is None:
            raise UnresolvedNameError(
                message=f"Module '{imp.module_name}' has no function '{node.name}'",
                location=node.location,
                name=f"{node.module}.{node.name}",
            )
        self.check_arguments(node, [param.type for param in fn.params])
        node.target_kind = 'dependency'
        node.dependency = imp.module_name
        node.type = fn.returns
        return node.type

    def check_builtin_call(self, node: ast.CallExpr, imp: ast.Import, arg_types) -> Type:
        node.target_kind = 'builtin'
        entry = self.table.lookup(imp.module_name, node.name, len(node.args))
        if entry is None:
            arities = self.table.arities(imp.module_name, node.name)
            if arities:
                raise ArityError(
                    message=f"'{imp.module_name}.{node.name}' takes {arities[0]} argument(s), "
                            f"got {len(node.args)}",
                    location=node.location,
                    expected=arities[0],
                    found=len(node.args),
                )
            # Left for the code generator to report as an unknown built-in
            node.type = UNRESOLVED
            return node.type
        for arg, arg_type, type_name in zip(node.args, arg_types, entry.param_types):
            if type_name == 'any':
                if arg_type == VOID:
                    raise TypeMismatchError(
                        message="Cannot pass a void value",
                        location=arg.location,
                        expected="a value type",
                        found="void",
                    )
            else:
                self.expect_assignable(PRIMITIVES[type_name], arg)
        node.builtin = entry
        node.type = PRIMITIVES[entry.return_type]
        return node.type

    def check_arguments(self, node: ast.CallExpr, param_types: List[Type]):
        if len(node.args) != len(param_types):
            raise ArityError(
                message=f"'{node.name}' takes {len(param_types)} argument(s), got {len(node.args)}",
                location=node.location,
                expected=len(param_types),
                found=len(node.args),
            )
        for arg, param_type in zip(node.args, param_types):
            self.expect_assignable(param_type, arg)

    # --- helpers ---

    def expect_assignable(self, expected: Type, expr: ast.Expression):
        """Check that `expr` may flow into a slot of type `expected`, widening int to float"""
        found = expr.type
        if not expected.accepts(found) or found == VOID:
            raise TypeMismatchError(
                message=f"Expected {expected}, found {found}",
                location=expr.location,
                expected=str(expected),
                found=str(found),
            )
        if expected == FLOAT and found == INT:
            expr.widened = True

    def expect_condition(self, expr: ast.Expression):
        found = self.check(expr)
        if found != BOOL and not isinstance(found, UnresolvedType):
            raise TypeMismatchError(
                message=f"Condition must be bool, found {found}",
                location=expr.location,
                expected="bool",
                found=str(found),
            )

    def expect_operand(self, expr: ast.Expression, allowed):
        if isinstance(expr.type, UnresolvedType) or expr.type in allowed:
            return
        expected = " or ".join(str(t) for t in allowed)
        raise TypeMismatchError(
            message=f"Expected {expected} operand, found {expr.type}",
            location=expr.location,
            expected=expected,
            found=str(expr.type),
        )

    def expect_same(self, left: ast.Expression, right: ast.Expression):
        if isinstance(left.type, UnresolvedType) or isinstance(right.type, UnresolvedType):
            return
        if left.type != right.type:
            raise TypeMismatchError(
                message=f"Mismatched operand types: {left.type} and {right.type}",
                location=right.location,
                expected=str(left.type),
                found=str(right.type),
            )
