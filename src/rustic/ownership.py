"""Ownership inference: decides Move, BorrowShared, BorrowExclusive or Clone
for every use of a local or parameter.

Each function body is walked backwards over its structured control flow
while tracking the set of bindings that are still used later ("live").
A use that needs ownership moves the binding when nothing later reads it
and clones it otherwise. Parameter contracts (whether a function consumes,
mutates or only reads each parameter) are computed to a fixpoint over all
functions of the module, so recursive call graphs settle on a stable
signature before the final decisions are attached.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Set

import rustic.rustic_ast as ast
from rustic.errors import AmbiguousOwnershipError, CompileError, UseAfterMoveError
from rustic.rustic_ast import Demand, OwnershipDecision
from rustic.symbol_table import SymbolKind, SymbolTable

logger = logging.getLogger(__name__)


class ParamContract(Enum):
    SHARED = "shared"  # Only read: passed as &T
    EXCLUSIVE = "exclusive"  # Mutated in place: passed as &mut T
    CONSUMED = "consumed"  # Moved, reassigned or copyable: passed as T

    @property
    def rank(self) -> int:
        return _CONTRACT_RANK[self]

    def join(self, other: 'ParamContract') -> 'ParamContract':
        return self if self.rank >= other.rank else other

    @property
    def demand(self) -> Demand:
        """Demand a call places on the argument bound to this parameter"""
        return _CONTRACT_DEMAND[self]


_CONTRACT_RANK = {
    ParamContract.SHARED: 0,
    ParamContract.EXCLUSIVE: 1,
    ParamContract.CONSUMED: 2,
}

_CONTRACT_DEMAND = {
    ParamContract.SHARED: Demand.READ,
    ParamContract.EXCLUSIVE: Demand.MUTATE,
    ParamContract.CONSUMED: Demand.OWN,
}

_BUILTIN_DEMAND = {
    'value': Demand.OWN,
    'ref': Demand.READ,
    'mut': Demand.MUTATE,
}


@dataclass
class BindingInfo:
    """Per-binding summary of the final decisions"""
    symbol_id: int
    name: str
    uses: int = 0
    moved: bool = False
    mutable: bool = False


@dataclass
class OwnershipResult:
    contracts: Dict[str, List[ParamContract]]  # function name -> per-parameter contract
    bindings: Dict[int, BindingInfo]


def _order(location):
    return (location.line, location.column) if location else (0, 0)


def _merge(a: Dict[int, object], b: Dict[int, object]) -> Dict[int, object]:
    """Union of two live sets, keeping the earliest later-use location per binding"""
    merged = dict(b)
    for symbol_id, location in a.items():
        if symbol_id not in merged or _order(location) < _order(merged[symbol_id]):
            merged[symbol_id] = location
    return merged


class OwnershipAnalyzer:
    def __init__(self, symbol_table: SymbolTable, dependencies=None):
        self.symbol_table = symbol_table
        self.dependencies = dependencies or {}
        self.contracts: Dict[int, List[ParamContract]] = {}  # function symbol id -> contracts
        self.bindings: Dict[int, BindingInfo] = {}
        # State of the function currently being walked
        self.owned_params: Set[int] = set()
        self.pinned: List[Set[int]] = []
        self.errors: Dict[int, CompileError] = {}

    def analyze(self, module: ast.Module) -> OwnershipResult:
        functions = module.functions
        for fn in functions:
            self.contracts[fn.symbol_id] = [
                ParamContract.CONSUMED if param.type.is_copy() else ParamContract.SHARED
                for param in fn.params
            ]

        rounds = 0
        changed = True
        while changed:
            changed = False
            rounds += 1
            for fn in functions:
                current = self.contracts[fn.symbol_id]
                inferred = self.infer_contracts(fn)
                joined = [old.join(new) for old, new in zip(current, inferred)]
                if joined != current:
                    self.contracts[fn.symbol_id] = joined
                    changed = True
        logger.debug(f"Parameter contracts of {module.name} settled after {rounds} round(s)")

        for fn in functions:
            self.finalize(fn)

        return OwnershipResult(
            contracts={fn.name: list(self.contracts[fn.symbol_id]) for fn in functions},
            bindings=self.bindings,
        )

    # --- per function passes ---

    def infer_contracts(self, fn: ast.FnDecl) -> List[ParamContract]:
        """Contracts implied by the body when every parameter is treated as owned"""
        self.walk_function(fn, {param.symbol_id for param in fn.params})
        contracts = []
        for param in fn.params:
            if param.type.is_copy():
                contracts.append(ParamContract.CONSUMED)
                continue
            contract = ParamContract.SHARED
            for node in fn.body.walk():
                if isinstance(node, ast.Identifier) and node.symbol_id == param.symbol_id:
                    if node.decision is OwnershipDecision.MOVE:
                        contract = ParamContract.CONSUMED
                    elif node.decision is OwnershipDecision.BORROW_EXCLUSIVE:
                        contract = contract.join(ParamContract.EXCLUSIVE)
                elif (isinstance(node, ast.AssignStmt)
                      and isinstance(node.target, ast.Identifier)
                      and node.target.symbol_id == param.symbol_id):
                    contract = ParamContract.CONSUMED
            contracts.append(contract)
        return contracts

    def finalize(self, fn: ast.FnDecl):
        """Attach the final decisions and mutability, raising the first error in source order"""
        contracts = self.contracts[fn.symbol_id]
        owned = {
            param.symbol_id for param, contract in zip(fn.params, contracts)
            if contract is ParamContract.CONSUMED
        }
        self.walk_function(fn, owned)
        if self.errors:
            raise min(self.errors.values(), key=lambda e: _order(e.location))

        mutated = set()
        for node in fn.body.walk():
            if isinstance(node, ast.Identifier) and node.decision is OwnershipDecision.BORROW_EXCLUSIVE:
                mutated.add(node.symbol_id)
            elif isinstance(node, ast.AssignStmt):
                mutated.add(ast.place_root(node.target).symbol_id)

        for param, contract in zip(fn.params, contracts):
            param.contract = contract
            param.mutable = contract is ParamContract.CONSUMED and param.symbol_id in mutated
            self.bindings[param.symbol_id] = BindingInfo(param.symbol_id, param.name,
                                                         mutable=param.mutable)
        for node in fn.body.walk():
            if isinstance(node, ast.LetStmt):
                node.mutable = node.symbol_id in mutated
                self.bindings[node.symbol_id] = BindingInfo(node.symbol_id, node.name,
                                                            mutable=node.mutable)
        for node in fn.body.walk():
            if isinstance(node, ast.Identifier) and node.decision is not None:
                info = self.bindings[node.symbol_id]
                info.uses += 1
                info.moved = info.moved or node.decision is OwnershipDecision.MOVE

    def walk_function(self, fn: ast.FnDecl, owned_params: Set[int]):
        self.owned_params = owned_params
        self.pinned = []
        self.errors = {}
        self.visit(fn.body, {})

    # --- statements, walked last to first ---

    def visit(self, stmt, live):
        method = getattr(self, f'visit_{stmt.__class__.__name__}')
        return method(stmt, live)

    def visit_Block(self, node: ast.Block, live):
        live = dict(live)
        for stmt in reversed(node.statements):
            live = self.visit(stmt, live)
        return live

    def visit_ReturnStmt(self, node: ast.ReturnStmt, live):
        # Nothing after a return is reachable
        live = {}
        if node.value is not None:
            self.use(node.value, Demand.OWN, live)
        return live

    def visit_LetStmt(self, node: ast.LetStmt, live):
        live = dict(live)
        live.pop(node.symbol_id, None)
        self.use(node.initializer, Demand.OWN, live)
        return live

    def visit_AssignStmt(self, node: ast.AssignStmt, live):
        live = dict(live)
        if isinstance(node.target, ast.Identifier):
            # A whole reassignment gives the binding a fresh value
            live.pop(node.target.symbol_id, None)
        else:
            self.use(node.target, Demand.MUTATE, live)
        self.use(node.value, Demand.OWN, live)
        return live

    def visit_ExprStmt(self, node: ast.ExprStmt, live):
        live = dict(live)
        self.use(node.expr, Demand.READ, live)
        return live

    def visit_IfStmt(self, node: ast.IfStmt, live):
        then_live = self.visit(node.then_block, live)
        else_live = self.visit(node.else_branch, live) if node.else_branch else dict(live)
        merged = _merge(then_live, else_live)
        self.use(node.condition, Demand.READ, merged)
        return merged

    def visit_WhileStmt(self, node: ast.WhileStmt, live):
        head = dict(live)
        while True:
            body_in = self.visit(node.body, head)
            new_head = _merge(live, body_in)
            self.use(node.condition, Demand.READ, new_head)
            if new_head.keys() == head.keys():
                return new_head
            head = new_head

    # --- expressions, walked in reverse evaluation order ---

    def use(self, expr, demand: Demand, live):
        if isinstance(expr, ast.Identifier):
            self.use_binding(expr, demand, live)
        elif isinstance(expr, ast.FieldAccessExpr):
            receiver_demand = Demand.MUTATE if demand is Demand.MUTATE else Demand.READ
            self.use(expr.receiver, receiver_demand, live)
        elif isinstance(expr, ast.BinaryExpr):
            self.use(expr.right, Demand.READ, live)
            self.use(expr.left, Demand.READ, live)
        elif isinstance(expr, ast.UnaryExpr):
            self.use(expr.operand, Demand.READ, live)
        elif isinstance(expr, ast.StructLiteralExpr):
            for init in reversed(expr.fields):
                self.use(init.value, Demand.OWN, live)
        elif isinstance(expr, ast.CallExpr):
            self.use_call(expr, live)

    def use_binding(self, node: ast.Identifier, demand: Demand, live):
        symbol_id = node.symbol_id
        later = live.get(symbol_id)
        if node.explicit_move:
            if demand is not Demand.OWN:
                self.report(node, AmbiguousOwnershipError(
                    message=f"'{node.name}' is moved where its value is only borrowed",
                    location=node.location,
                    notes=["remove move(...) here"],
                ))
            elif self.is_pinned(symbol_id):
                self.report(node, AmbiguousOwnershipError(
                    message=f"'{node.name}' is moved while another argument borrows it",
                    location=node.location,
                ))
            elif later is not None:
                self.report(node, UseAfterMoveError(
                    message=f"'{node.name}' is used after being moved",
                    location=later,
                    moved_at=node.location,
                    notes=[f"value moved at {node.location}"],
                ))
            decision = OwnershipDecision.MOVE
        elif demand is Demand.READ:
            decision = OwnershipDecision.BORROW_SHARED
        elif demand is Demand.MUTATE:
            decision = OwnershipDecision.BORROW_EXCLUSIVE
        elif later is None and self.is_owned(symbol_id) and not self.is_pinned(symbol_id):
            decision = OwnershipDecision.MOVE
        else:
            decision = OwnershipDecision.CLONE
        node.decision = decision
        live[symbol_id] = node.location

    def use_call(self, node: ast.CallExpr, live):
        demands = self.call_demands(node)
        node.arg_demands = demands
        self.check_exclusive_args(node, demands)
        borrowed = set()
        for arg, demand in zip(node.args, demands):
            root = ast.place_root(arg)
            if demand is not Demand.OWN and root is not None:
                borrowed.add(root.symbol_id)
        # Bindings borrowed by an argument stay borrowed until the call returns
        self.pinned.append(borrowed)
        for arg, demand in reversed(list(zip(node.args, demands))):
            self.use(arg, demand, live)
        self.pinned.pop()

    def call_demands(self, node: ast.CallExpr) -> List[Demand]:
        if node.target_kind == 'function':
            return [c.demand for c in self.contracts[node.symbol_id]]
        if node.target_kind == 'dependency':
            unit = self.dependencies[node.dependency]
            return [c.demand for c in unit.contracts[node.name]]
        if node.builtin is not None:
            return [_BUILTIN_DEMAND[kind] for kind in node.builtin.ownership]
        return [Demand.READ] * len(node.args)

    def check_exclusive_args(self, node: ast.CallExpr, demands: List[Demand]):
        for i, (arg, demand) in enumerate(zip(node.args, demands)):
            root = ast.place_root(arg)
            if demand is not Demand.MUTATE or root is None:
                continue
            for j, other in enumerate(node.args):
                if j == i:
                    continue
                for inner in other.walk():
                    if isinstance(inner, ast.Identifier) and inner.symbol_id == root.symbol_id:
                        self.report(inner, AmbiguousOwnershipError(
                            message=f"'{root.name}' is borrowed mutably by argument {i + 1} "
                                    f"and used again by argument {j + 1} of the same call",
                            location=inner.location,
                            notes=[f"mutable borrow at {root.location}"],
                        ))

    # --- helpers ---

    def is_owned(self, symbol_id: int) -> bool:
        symbol = self.symbol_table.symbol(symbol_id)
        if symbol.kind is SymbolKind.PARAM:
            return symbol_id in self.owned_params
        return True

    def is_pinned(self, symbol_id: int) -> bool:
        return any(symbol_id in borrowed for borrowed in self.pinned)

    def report(self, node, error: CompileError):
        # Keyed by node so loop re-walks replace rather than duplicate
        self.errors[id(node)] = error
