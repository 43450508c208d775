#!/usr/bin/env python3
"""
decimalguard - AST-Based Undefined-Argument Checker for Decimal Math Helpers
============================================================================
A structural analysis checker for JavaScript/TypeScript files using tree-sitter AST parsing.

Flags call sites of decimal arithmetic helpers (divDecimals, mulDecimals,
addDecimals, subDecimals) whose arguments may silently receive an undefined or
non-numeric value and produce a wrong result instead of throwing.

Features:
- JavaScript/TypeScript/TSX AST parsing via tree-sitter
- Lexical scope resolution (var hoisting, block scopes, parameters, imports,
  destructuring defaults)
- Per-argument risk classification with HIGH/MEDIUM/LOW severity
- Actionable suggestions per finding plus general remediation guidance
- Rich terminal UI, JSON and plain-text reports
- Optional CI gating on HIGH findings

Requirements:
    pip install tree-sitter tree-sitter-javascript tree-sitter-typescript rich pyyaml

Usage:
    python3 decimalguard.py                 # scans ./src
    python3 decimalguard.py app/ --fail-on-high
    python3 decimalguard.py src --output json -o report.json
"""

import os
import sys
import json
import argparse
import time
from dataclasses import dataclass, field, replace
from enum import IntEnum
from pathlib import Path
from datetime import datetime
from collections import defaultdict
from typing import Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

import tree_sitter_javascript as tsjs
import tree_sitter_typescript as tsts
from tree_sitter import Language, Parser, Node

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.syntax import Syntax
from rich.columns import Columns
from rich.text import Text
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, MofNCompleteColumn
from rich.align import Align
from rich.rule import Rule
from rich import box

from decimalguard_config import (
    ConfigurationError,
    DecimalGuardConfig,
    LEVEL_NAMES,
    load_config,
)

__version__ = "1.0.0"

console = Console()
err_console = Console(stderr=True)

JS_LANG = Language(tsjs.language())
TS_LANG = Language(tsts.language_typescript())
TSX_LANG = Language(tsts.language_tsx())

# ============================================================================
# Enums & Data Classes
# ============================================================================

class RiskLevel(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class BindingKind(IntEnum):
    VARIABLE = 1
    PARAMETER = 2
    FUNCTION = 3
    CLASS = 4
    IMPORT = 5
    CATCH = 6
    OTHER = 7


@dataclass(frozen=True)
class Suggestion:
    """A remediation hint kept as template id + parameters until rendered."""
    template_id: str
    params: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def make(cls, template_id: str, **params: str) -> 'Suggestion':
        return cls(template_id, tuple(params.items()))

    def param_dict(self) -> Dict[str, str]:
        return dict(self.params)


@dataclass(frozen=True)
class Risk:
    """Verdict for one argument expression."""
    level: RiskLevel
    reason: str = ""
    suggestions: Tuple[Suggestion, ...] = ()


NO_RISK = Risk(RiskLevel.NONE)


@dataclass
class Binding:
    """The declaration an identifier resolves to."""
    name: str
    kind: BindingKind
    node: Node
    has_initializer: bool = True
    has_default: bool = False


@dataclass
class Issue:
    """A risky argument at a specific watched call site."""
    file_path: str
    line: int
    column: int
    function_name: str
    argument_position: int
    risk: Risk
    code_snippet: str
    line_content: str = ""


# ============================================================================
# Node Type Constants
# ============================================================================

LITERAL_TYPES = frozenset({'number', 'string'})

# `undefined` is its own node type in the grammar but never has a binding
IDENTIFIER_TYPES = frozenset({'identifier', 'undefined'})

MEMBER_TYPES = frozenset({'member_expression', 'subscript_expression'})

FUNCTION_SCOPE_TYPES = frozenset({
    'program',
    'function_declaration', 'function_expression', 'function',
    'generator_function_declaration', 'generator_function',
    'arrow_function', 'method_definition',
})

BLOCK_SCOPE_TYPES = frozenset({
    'statement_block', 'for_statement', 'for_in_statement',
    'catch_clause', 'switch_body', 'class',
})

FUNCTION_DECLARATION_TYPES = frozenset({
    'function_declaration', 'generator_function_declaration',
})

FUNCTION_EXPRESSION_TYPES = frozenset({
    'function_expression', 'function', 'generator_function',
})

CLASS_DECLARATION_TYPES = frozenset({'class_declaration', 'abstract_class_declaration'})

TS_PARAMETER_TYPES = frozenset({'required_parameter', 'optional_parameter'})

TS_EXTENSIONS = {'.ts', '.mts', '.cts'}
TSX_EXTENSIONS = {'.tsx'}

SUGGESTION_TEMPLATES = {
    'verify-declaration': "Check that '{name}' is imported or declared before use",
    'add-initializer': "Initialize '{name}' where it is declared, e.g. let {name} = 0",
    'add-parameter-default': "Give parameter '{name}' a default value, e.g. {name} = 0",
    'optional-chaining': "Use optional chaining: {object}?.{property}",
    'coalesce-fallback': "Fall back to a default value: ({expression} || 0)",
    'verify-nested-call': "Check that the nested {function}() call cannot produce undefined",
}

GENERAL_REMEDIATION = [
    "Give function parameters default values: function fn(value = 0) { ... }",
    "Give destructured properties default values: const { amount = 0 } = item || {}",
    "Use optional chaining: item?.amount",
    'Check types before calling: typeof value === "number" ? divDecimals(value, 100) : 0',
    "Convert with Number() and a fallback: divDecimals(Number(value) || 0, 100)",
    "Validate data shape at the component or API boundary",
    "Enable TypeScript strict mode to catch missing values at compile time",
]


def render_suggestion(suggestion: Suggestion) -> str:
    """Render a structured suggestion into display text."""
    template = SUGGESTION_TEMPLATES.get(suggestion.template_id)
    if template is None:
        return suggestion.template_id
    return template.format(**suggestion.param_dict())


# ============================================================================
# AST Helpers
# ============================================================================

def walk(node: Node) -> Iterator[Node]:
    """Yield node and all descendants in document pre-order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def node_text(node: Node) -> str:
    """Get the source text of a node."""
    return node.text.decode('utf-8') if node.text else ""


def get_node_line(node: Node) -> int:
    """Get 1-based line number."""
    return node.start_point[0] + 1


def get_node_col(node: Node, source_lines: Optional[List[str]] = None) -> int:
    """Get 0-based column offset in characters.

    tree-sitter reports byte columns; with the source lines at hand the
    UTF-8 prefix of the line is decoded so non-ASCII text before the node
    is counted once per character.
    """
    row, byte_col = node.start_point
    if source_lines is None or not 0 <= row < len(source_lines):
        return byte_col
    prefix = source_lines[row].encode('utf-8')[:byte_col]
    return len(prefix.decode('utf-8', errors='ignore'))


def get_child_by_field(node: Node, field_name: str) -> Optional[Node]:
    """Get child node by tree-sitter field name."""
    return node.child_by_field_name(field_name)


def get_call_args(node: Node) -> List[Node]:
    """Extract argument nodes from a call_expression's arguments list."""
    args_node = get_child_by_field(node, 'arguments')
    if not args_node:
        return []
    return [c for c in args_node.named_children if c.type != 'comment']


def has_optional_chain(node: Node) -> bool:
    return any(c.type == 'optional_chain' for c in node.children)


def unwrap_parens(node: Node) -> Node:
    """Strip redundant parentheses around an expression."""
    while node.type == 'parenthesized_expression':
        inner = [c for c in node.named_children if c.type != 'comment']
        if not inner:
            break
        node = inner[0]
    return node


def language_for(file_path: str) -> Language:
    """Pick the grammar for a file by extension."""
    ext = Path(file_path).suffix.lower()
    if ext in TSX_EXTENSIONS:
        return TSX_LANG
    if ext in TS_EXTENSIONS:
        return TS_LANG
    return JS_LANG


# ============================================================================
# Parsing
# ============================================================================

class ParseFailure(Exception):
    """A source file could not be parsed into a clean syntax tree."""


def strip_bom(source_code: str) -> str:
    return source_code[1:] if source_code.startswith('\ufeff') else source_code


def _first_error_node(root: Node) -> Optional[Node]:
    stack = [root]
    while stack:
        current = stack.pop()
        if current.type == 'ERROR' or current.is_missing:
            return current
        stack.extend(reversed([c for c in current.children if c.has_error or c.is_missing]))
    return None


def parse_source(source_code: str, file_path: str) -> Node:
    """Parse source into a tree-sitter tree and return its root node.

    Raises ParseFailure when the tree contains syntax errors; tree-sitter
    recovers from errors, but argument shapes inside an ERROR region cannot
    be trusted.
    """
    source_code = strip_bom(source_code)
    parser = Parser(language_for(file_path))
    tree = parser.parse(source_code.encode('utf-8'))
    root = tree.root_node
    if root.has_error:
        bad = _first_error_node(root) or root
        column = get_node_col(bad, source_code.split('\n'))
        raise ParseFailure(
            f"syntax error at line {get_node_line(bad)}, column {column}"
        )
    return root


# ============================================================================
# Scope Resolution
# ============================================================================

class ScopeResolver:
    """Resolves an identifier reference to its declaration."""

    def resolve(self, identifier: Node) -> Optional[Binding]:
        raise NotImplementedError


def _is_plain_name(node: Node) -> bool:
    return node.type in ('identifier', 'shorthand_property_identifier_pattern')


def _pattern_bindings(node: Node, defaulted: bool = False) -> Iterator[Tuple[Node, bool]]:
    """Yield (name_node, has_default) for every name a binding pattern declares."""
    kind = node.type
    if _is_plain_name(node):
        yield node, defaulted
    elif kind in ('assignment_pattern', 'object_assignment_pattern'):
        left = get_child_by_field(node, 'left')
        if left is not None:
            yield from _pattern_bindings(left, defaulted or _is_plain_name(left))
    elif kind == 'pair_pattern':
        value = get_child_by_field(node, 'value')
        if value is not None:
            yield from _pattern_bindings(value, defaulted)
    elif kind == 'rest_pattern':
        # A rest element is always bound, to an empty array/object at worst
        for child in node.named_children:
            yield from _pattern_bindings(child, True)
    elif kind in ('object_pattern', 'array_pattern'):
        for child in node.named_children:
            yield from _pattern_bindings(child, defaulted)
    elif kind in TS_PARAMETER_TYPES:
        pattern = get_child_by_field(node, 'pattern')
        has_value = get_child_by_field(node, 'value') is not None
        if pattern is not None:
            yield from _pattern_bindings(pattern, defaulted or (has_value and _is_plain_name(pattern)))


class TreeSitterScopeResolver(ScopeResolver):
    """Lexical scope table built from a tree-sitter JavaScript/TypeScript tree.

    Function bodies share the scope of their function so parameters and
    `var` declarations live together. The table is built on first lookup.
    """

    def __init__(self, root: Node):
        self.root = root
        self._scopes: Optional[Dict[int, Dict[str, Binding]]] = None

    def resolve(self, identifier: Node) -> Optional[Binding]:
        if self._scopes is None:
            self._scopes = {}
            self._build()
        name = node_text(identifier)
        current = identifier.parent
        while current is not None:
            scope = self._scopes.get(current.id)
            if scope is not None and name in scope:
                return scope[name]
            current = current.parent
        return None

    @staticmethod
    def _is_scope(node: Node) -> bool:
        if node.type in FUNCTION_SCOPE_TYPES:
            return True
        if node.type == 'statement_block':
            parent = node.parent
            return parent is None or (parent.type not in FUNCTION_SCOPE_TYPES
                                      and parent.type != 'catch_clause')
        return node.type in BLOCK_SCOPE_TYPES

    def _owning_scope(self, node: Node, hoist: bool) -> Node:
        """Nearest enclosing scope node above `node`, function-level when hoisting."""
        current = node.parent
        while current is not None:
            if hoist and current.type in FUNCTION_SCOPE_TYPES:
                return current
            if not hoist and self._is_scope(current):
                return current
            current = current.parent
        return self.root

    def _declare(self, scope_node: Node, name_node: Node, kind: BindingKind,
                 has_initializer: bool = True, has_default: bool = False):
        scope = self._scopes.setdefault(scope_node.id, {})
        name = node_text(name_node)
        if name in scope:
            return
        scope[name] = Binding(name=name, kind=kind, node=name_node,
                              has_initializer=has_initializer, has_default=has_default)

    def _build(self):
        for node in walk(self.root):
            if not node.is_named:
                continue
            kind = node.type
            if kind in ('variable_declaration', 'lexical_declaration'):
                self._declare_variables(node, hoist=(kind == 'variable_declaration'))
            elif kind == 'for_in_statement':
                self._declare_loop_variables(node)
            elif kind in FUNCTION_SCOPE_TYPES and kind != 'program':
                self._declare_function(node)
            elif kind in CLASS_DECLARATION_TYPES:
                name = get_child_by_field(node, 'name')
                if name is not None:
                    self._declare(self._owning_scope(node, hoist=False), name, BindingKind.CLASS)
            elif kind == 'class':
                name = get_child_by_field(node, 'name')
                if name is not None:
                    self._declare(node, name, BindingKind.CLASS)
            elif kind == 'import_statement':
                self._declare_imports(node)
            elif kind == 'catch_clause':
                param = get_child_by_field(node, 'parameter')
                if param is not None:
                    for name, _ in _pattern_bindings(param):
                        self._declare(node, name, BindingKind.CATCH)
            elif kind == 'enum_declaration':
                name = get_child_by_field(node, 'name')
                if name is not None:
                    self._declare(self._owning_scope(node, hoist=False), name, BindingKind.OTHER)

    def _declare_variables(self, decl: Node, hoist: bool):
        scope = self._owning_scope(decl, hoist)
        for declarator in decl.named_children:
            if declarator.type != 'variable_declarator':
                continue
            name_node = get_child_by_field(declarator, 'name')
            if name_node is None:
                continue
            initialized = get_child_by_field(declarator, 'value') is not None
            for name, _ in _pattern_bindings(name_node):
                self._declare(scope, name, BindingKind.VARIABLE, has_initializer=initialized)

    def _declare_loop_variables(self, loop: Node):
        """for (const x of xs) / for (var k in obj): bound on every iteration."""
        kind_node = get_child_by_field(loop, 'kind')
        left = get_child_by_field(loop, 'left')
        if kind_node is None or left is None:
            return
        if node_text(kind_node) == 'var':
            scope = self._owning_scope(loop, hoist=True)
        else:
            scope = loop
        for name, _ in _pattern_bindings(left):
            self._declare(scope, name, BindingKind.VARIABLE)

    def _declare_function(self, func: Node):
        name = get_child_by_field(func, 'name')
        if name is not None and name.type == 'identifier':
            if func.type in FUNCTION_DECLARATION_TYPES:
                self._declare(self._owning_scope(func, hoist=False), name, BindingKind.FUNCTION)
            elif func.type in FUNCTION_EXPRESSION_TYPES:
                self._declare(func, name, BindingKind.FUNCTION)

        params = get_child_by_field(func, 'parameters')
        if params is None:
            # Single-param arrow: x => x + 1
            single = get_child_by_field(func, 'parameter')
            if single is not None:
                for param_name, defaulted in _pattern_bindings(single):
                    self._declare(func, param_name, BindingKind.PARAMETER, has_default=defaulted)
            return
        for param in params.named_children:
            for param_name, defaulted in _pattern_bindings(param):
                self._declare(func, param_name, BindingKind.PARAMETER, has_default=defaulted)

    def _declare_imports(self, imp: Node):
        for clause in imp.named_children:
            if clause.type not in ('import_clause', 'import_require_clause'):
                continue
            for child in clause.named_children:
                if child.type == 'identifier':
                    self._declare(self.root, child, BindingKind.IMPORT)
                elif child.type == 'namespace_import':
                    for sub in child.named_children:
                        if sub.type == 'identifier':
                            self._declare(self.root, sub, BindingKind.IMPORT)
                elif child.type == 'named_imports':
                    for specifier in child.named_children:
                        if specifier.type != 'import_specifier':
                            continue
                        local = get_child_by_field(specifier, 'alias') or get_child_by_field(specifier, 'name')
                        if local is not None and local.type == 'identifier':
                            self._declare(self.root, local, BindingKind.IMPORT)


# ============================================================================
# RiskClassifier
# ============================================================================

class RiskClassifier:
    """Assigns a Risk to one argument expression of a watched call.

    Dispatch is over a closed set of expression shapes; anything unmodeled
    is LOW so that gaps in coverage stay visible.
    """

    def __init__(self, watched_functions: FrozenSet[str],
                 safe_conversion_functions: FrozenSet[str]):
        self.watched_functions = frozenset(watched_functions)
        self.safe_conversion_functions = frozenset(safe_conversion_functions)

    def classify(self, node: Node, resolver: ScopeResolver) -> Risk:
        node = unwrap_parens(node)
        kind = node.type

        if kind in LITERAL_TYPES:
            return NO_RISK
        if kind in IDENTIFIER_TYPES:
            return self._classify_identifier(node, resolver)
        if kind in MEMBER_TYPES:
            return self._classify_member(node)
        if kind == 'ternary_expression':
            return self._classify_conditional(node, resolver)
        if kind == 'call_expression':
            return self._classify_call(node)
        return Risk(RiskLevel.LOW, f"unrecognized argument shape ({kind})")

    def _classify_identifier(self, node: Node, resolver: ScopeResolver) -> Risk:
        name = node_text(node)
        binding = resolver.resolve(node)

        if binding is None:
            return Risk(
                RiskLevel.HIGH,
                f"binding for '{name}' not found; likely global or undeclared",
                (Suggestion.make('verify-declaration', name=name),),
            )
        if binding.kind == BindingKind.VARIABLE and not binding.has_initializer:
            return Risk(
                RiskLevel.MEDIUM,
                f"'{name}' is declared without initial value",
                (Suggestion.make('add-initializer', name=name),),
            )
        if binding.kind == BindingKind.PARAMETER and not binding.has_default:
            return Risk(
                RiskLevel.MEDIUM,
                f"parameter '{name}' has no default value",
                (Suggestion.make('add-parameter-default', name=name),),
            )
        return NO_RISK

    def _classify_member(self, node: Node) -> Risk:
        if self._is_optional_access(node):
            return NO_RISK
        if self._has_destructuring_default(node):
            return NO_RISK

        obj = get_child_by_field(node, 'object')
        obj_text = node_text(obj) if obj is not None else ''
        return Risk(
            RiskLevel.LOW,
            "accesses a property that may be undefined if the object is absent",
            (
                Suggestion.make('optional-chaining', object=obj_text,
                                property=self._property_suffix(node)),
                Suggestion.make('coalesce-fallback', expression=node_text(node)),
            ),
        )

    def _classify_conditional(self, node: Node, resolver: ScopeResolver) -> Risk:
        # Chained ternaries are flattened into their leaf branches, then-branch first
        risks = []
        pending = [node]
        while pending:
            current = unwrap_parens(pending.pop())
            if current.type != 'ternary_expression':
                risks.append(self.classify(current, resolver))
                continue
            for field_name in ('alternative', 'consequence'):
                branch = get_child_by_field(current, field_name)
                if branch is not None:
                    pending.append(branch)

        level = max((r.level for r in risks), default=RiskLevel.NONE)
        if level == RiskLevel.NONE:
            return NO_RISK
        return Risk(
            RiskLevel(level),
            "one or both branches of the conditional carry risk",
            tuple(s for r in risks for s in r.suggestions),
        )

    def _classify_call(self, node: Node) -> Risk:
        callee = get_child_by_field(node, 'function')
        if callee is None or callee.type != 'identifier':
            return NO_RISK
        name = node_text(callee)
        if name in self.safe_conversion_functions:
            return NO_RISK
        if name in self.watched_functions:
            return Risk(
                RiskLevel.LOW,
                f"nested unsafe call {name}() may propagate an undefined value",
                (Suggestion.make('verify-nested-call', function=name),),
            )
        # Unknown calls are trusted
        return NO_RISK

    @staticmethod
    def _is_optional_access(node: Node) -> bool:
        """True if `?.` short-circuits anywhere along the access chain."""
        current = node
        while current is not None and current.type in MEMBER_TYPES | {'call_expression'}:
            if has_optional_chain(current):
                return True
            field_name = 'function' if current.type == 'call_expression' else 'object'
            current = get_child_by_field(current, field_name)
            if current is not None:
                current = unwrap_parens(current)
        return False

    @staticmethod
    def _property_key(node: Node) -> Optional[str]:
        if node.type == 'member_expression':
            prop = get_child_by_field(node, 'property')
            return node_text(prop) if prop is not None else None
        index = get_child_by_field(node, 'index')
        if index is not None and index.type == 'string':
            return node_text(index)[1:-1]
        return None

    @staticmethod
    def _property_suffix(node: Node) -> str:
        if node.type == 'member_expression':
            prop = get_child_by_field(node, 'property')
            return node_text(prop) if prop is not None else ''
        index = get_child_by_field(node, 'index')
        return f"[{node_text(index)}]" if index is not None else '[]'

    def _has_destructuring_default(self, node: Node) -> bool:
        """Enclosing declarator destructures this property with a default.

        e.g. const { rate = 0 } = compute(item.rate)
        """
        key = self._property_key(node)
        if key is None:
            return False
        declarator = node.parent
        while declarator is not None and declarator.type != 'variable_declarator':
            declarator = declarator.parent
        if declarator is None:
            return False
        pattern = get_child_by_field(declarator, 'name')
        if pattern is None or pattern.type != 'object_pattern':
            return False

        for prop in pattern.named_children:
            if prop.type == 'object_assignment_pattern':
                left = get_child_by_field(prop, 'left')
                if left is not None and node_text(left) == key:
                    return True
            elif prop.type == 'pair_pattern':
                prop_key = get_child_by_field(prop, 'key')
                value = get_child_by_field(prop, 'value')
                if (prop_key is not None and value is not None
                        and node_text(prop_key).strip('\'"') == key
                        and value.type == 'assignment_pattern'):
                    return True
        return False


# ============================================================================
# Call-Site Scanner & Issue Aggregator
# ============================================================================

def iter_watched_calls(root: Node, watched_functions: FrozenSet[str]) -> Iterator[Tuple[Node, str]]:
    """Yield (call_node, function_name) for direct calls to watched functions.

    Only bare identifier callees match; `math.divDecimals(x)` is not
    recognized.
    """
    for node in walk(root):
        if node.type != 'call_expression':
            continue
        callee = get_child_by_field(node, 'function')
        if callee is None or callee.type != 'identifier':
            continue
        name = node_text(callee)
        if name in watched_functions:
            yield node, name


def group_by_level(issues: List[Issue]) -> Dict[RiskLevel, List[Issue]]:
    """Partition issues into HIGH/MEDIUM/LOW buckets, keeping insertion order."""
    buckets: Dict[RiskLevel, List[Issue]] = {
        RiskLevel.HIGH: [], RiskLevel.MEDIUM: [], RiskLevel.LOW: [],
    }
    for issue in issues:
        buckets[issue.risk.level].append(issue)
    return buckets


class IssueAggregator:
    """Ordered, append-only collection of Issues for a run."""

    def __init__(self):
        self.issues: List[Issue] = []

    def __len__(self) -> int:
        return len(self.issues)

    def __iter__(self) -> Iterator[Issue]:
        return iter(self.issues)

    def record(self, file_path: str, call_node: Node, function_name: str,
               argument_index: int, risk: Risk,
               source_lines: Optional[List[str]] = None) -> Optional[Issue]:
        """Append an Issue for a classified argument if it carries any risk."""
        if risk.level <= RiskLevel.NONE:
            return None
        args = get_call_args(call_node)
        if not 0 <= argument_index < len(args):
            raise IndexError(
                f"argument index {argument_index} out of range for {function_name}() "
                f"with {len(args)} argument(s)"
            )
        line = get_node_line(call_node)
        line_content = ""
        if source_lines and 0 < line <= len(source_lines):
            line_content = source_lines[line - 1].strip()
        issue = Issue(
            file_path=file_path,
            line=line,
            column=get_node_col(call_node, source_lines),
            function_name=function_name,
            argument_position=argument_index + 1,
            risk=risk,
            code_snippet=node_text(args[argument_index]),
            line_content=line_content,
        )
        self.issues.append(issue)
        return issue

    def merge(self, other: 'IssueAggregator'):
        self.issues.extend(other.issues)

    def by_level(self) -> Dict[RiskLevel, List[Issue]]:
        return group_by_level(self.issues)

    def has_high(self) -> bool:
        return any(i.risk.level == RiskLevel.HIGH for i in self.issues)


def scan_tree(root: Node, file_path: str, config: DecimalGuardConfig,
              aggregator: IssueAggregator, source_lines: Optional[List[str]] = None):
    """Classify every argument of every watched call in one parsed file."""
    resolver = TreeSitterScopeResolver(root)
    classifier = RiskClassifier(config.watched_functions, config.safe_conversion_functions)
    for call, function_name in iter_watched_calls(root, config.watched_functions):
        for index, arg in enumerate(get_call_args(call)):
            risk = classifier.classify(arg, resolver)
            aggregator.record(file_path, call, function_name, index, risk, source_lines)


def analyze_source(source_code: str, file_path: str,
                   config: Optional[DecimalGuardConfig] = None) -> IssueAggregator:
    """Parse and scan one file's source. Raises ParseFailure on syntax errors."""
    config = config or DecimalGuardConfig()
    source_code = strip_bom(source_code)
    root = parse_source(source_code, file_path)
    aggregator = IssueAggregator()
    # Rows follow tree-sitter, which only breaks lines on \n
    scan_tree(root, file_path, config, aggregator, source_code.split('\n'))
    return aggregator


# ============================================================================
# Rich UI Output
# ============================================================================

LEVEL_STYLES = {
    RiskLevel.HIGH: ('bold red', 'bold white on red', 'HIGH'),
    RiskLevel.MEDIUM: ('yellow', 'bold yellow', 'MEDIUM'),
    RiskLevel.LOW: ('green', 'bold green', 'LOW'),
}


def filter_issues(issues: List[Issue], min_level: str = 'LOW') -> List[Issue]:
    threshold = RiskLevel[min_level]
    return [i for i in issues if i.risk.level >= threshold]


def _print_banner():
    title_content = Text()
    title_content.append("decimalguard", style="bold yellow")
    title_content.append(f" v{__version__}\n\n", style="dim")
    title_content.append("Tree-sitter AST Checker for Undefined Decimal Math Arguments\n", style="bold white")
    title_content.append("Unresolved bindings | Missing defaults | Unguarded member access", style="dim")

    console.print()
    console.print(Panel(
        Align.center(title_content),
        border_style="yellow",
        box=box.DOUBLE,
        padding=(1, 2),
    ))
    console.print()


def _build_stats_sidebar(result: 'ScanResult', issues: List[Issue]) -> Panel:
    stats = Table(show_header=False, box=None, padding=(0, 1), expand=True)
    stats.add_column("key", style="bold cyan", no_wrap=True, ratio=3)
    stats.add_column("value", style="white", ratio=1)
    stats.add_row("Files Scanned", str(result.files_scanned))
    stats.add_row("Files Skipped", str(len(result.skipped_files)))
    stats.add_row("Total Issues", str(len(issues)))
    stats.add_row("Scan Time", f"{result.elapsed:.2f}s")
    stats.add_row("", "")

    level_counts = defaultdict(int)
    for issue in issues:
        level_counts[issue.risk.level] += 1
    for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
        count = level_counts.get(level, 0)
        if count > 0:
            style, _, label = LEVEL_STYLES[level]
            stats.add_row(Text(label, style=style), str(count))

    stats.add_row("", "")
    fn_counts = defaultdict(int)
    for issue in issues:
        fn_counts[issue.function_name] += 1
    for name, count in sorted(fn_counts.items(), key=lambda x: -x[1]):
        stats.add_row(Text(f"{name}()", style="cyan"), str(count))

    return Panel(stats, title="[bold white]Scan Statistics[/bold white]",
                 border_style="cyan", box=box.ROUNDED, padding=(1, 1))


def _build_issue_panel(index: int, issue: Issue, source_code: Optional[str] = None) -> Panel:
    border, badge, label = LEVEL_STYLES[issue.risk.level]

    title = Text()
    title.append(f" {label} ", style=badge)
    title.append(f" {index}. {issue.function_name}() argument {issue.argument_position} ",
                 style="bold white")

    content_parts = []

    loc = Text()
    loc.append("Location: ", style="bold cyan")
    loc.append(f"{issue.file_path}:{issue.line}:{issue.column}", style="white")
    arg = Text()
    arg.append("Argument: ", style="bold magenta")
    arg.append(issue.code_snippet, style="white")
    content_parts.append(Columns([loc, arg], padding=(0, 4)))

    reason = Text()
    reason.append(f"\n{issue.risk.reason}", style="italic white")
    content_parts.append(reason)

    lexer = "typescript" if Path(issue.file_path).suffix.lower() in TS_EXTENSIONS | TSX_EXTENSIONS else "javascript"
    if source_code:
        src_lines = source_code.split('\n')
        start = max(0, issue.line - 3)
        end = min(len(src_lines), issue.line + 2)
        snippet = '\n'.join(src_lines[start:end])
        content_parts.append(Text(""))
        content_parts.append(Syntax(snippet, lexer, theme="monokai",
                                    line_numbers=True, start_line=start + 1,
                                    highlight_lines={issue.line}))
    elif issue.line_content:
        content_parts.append(Text(""))
        content_parts.append(Syntax(issue.line_content, lexer, theme="monokai",
                                    line_numbers=True, start_line=issue.line))

    if issue.risk.suggestions:
        sug = Text()
        sug.append("\nSuggestions:", style="bold yellow")
        for suggestion in issue.risk.suggestions:
            sug.append(f"\n  - {render_suggestion(suggestion)}", style="dim white")
        content_parts.append(sug)

    return Panel(Group(*content_parts), title=title, border_style=border,
                 box=box.ROUNDED, padding=(1, 2))


def _build_remediation_panel() -> Panel:
    text = Text()
    for n, line in enumerate(GENERAL_REMEDIATION, 1):
        if n > 1:
            text.append("\n")
        text.append(f"{n}. ", style="bold yellow")
        text.append(line, style="white")
    return Panel(text, title="[bold white]General Remediation[/bold white]",
                 border_style="yellow", box=box.ROUNDED, padding=(1, 2))


def output_rich(result: 'ScanResult', target: str, min_level: str = 'LOW'):
    issues = filter_issues(result.aggregator.issues, min_level)
    scan_date = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    header = Text()
    header.append("Target: ", style="bold cyan")
    header.append(f"{target}  ", style="white")
    header.append("Date: ", style="bold cyan")
    header.append(f"{scan_date}  ", style="white")
    header.append("Level: ", style="bold cyan")
    header.append(f">= {min_level}", style="white")

    console.print(Panel(Align.center(header), title="[bold white]Scan Info[/bold white]",
                        border_style="blue", box=box.ROUNDED))
    console.print()
    console.print(_build_stats_sidebar(result, issues))
    console.print()

    if not issues:
        console.print(Panel(
            Align.center(Text("No risky arguments found.", style="bold green")),
            border_style="green", box=box.ROUNDED, padding=(1, 4)))
        return

    source_cache: Dict[str, Optional[str]] = {}
    for level, bucket in group_by_level(issues).items():
        if not bucket:
            continue
        border, _, label = LEVEL_STYLES[level]
        console.print(Rule(f"[bold white]{label} risk ({len(bucket)} issues)[/bold white]", style=border))
        console.print()
        for n, issue in enumerate(bucket, 1):
            if issue.file_path not in source_cache:
                source_cache[issue.file_path] = read_file(issue.file_path)
            console.print(_build_issue_panel(n, issue, source_code=source_cache[issue.file_path]))
            console.print()

    console.print(_build_remediation_panel())


def output_text_plain(result: 'ScanResult', file_path: str, min_level: str = 'LOW'):
    issues = filter_issues(result.aggregator.issues, min_level)
    with open(file_path, 'w', encoding='utf-8') as out:
        out.write(f"decimalguard: {len(issues)} potential issue(s) in {result.files_scanned} file(s)\n")
        for level, bucket in group_by_level(issues).items():
            if not bucket:
                continue
            out.write(f"\n{LEVEL_STYLES[level][2]} risk ({len(bucket)} issues)\n")
            out.write(f"{'='*70}\n")
            for n, issue in enumerate(bucket, 1):
                out.write(f"\n{n}. {issue.file_path}:{issue.line}:{issue.column}\n")
                out.write(f"   Function: {issue.function_name}(), argument: {issue.argument_position}\n")
                out.write(f"   Problem: {issue.risk.reason}\n")
                out.write(f"   Code: {issue.code_snippet}\n")
                if issue.risk.suggestions:
                    out.write("   Suggestions:\n")
                    for suggestion in issue.risk.suggestions:
                        out.write(f"   - {render_suggestion(suggestion)}\n")
        out.write(f"\n\nGeneral remediation:\n{'='*70}\n")
        for n, line in enumerate(GENERAL_REMEDIATION, 1):
            out.write(f"{n}. {line}\n")


def issue_to_dict(issue: Issue) -> dict:
    return {
        "file": issue.file_path,
        "line": issue.line,
        "column": issue.column,
        "function": issue.function_name,
        "argument": issue.argument_position,
        "level": issue.risk.level.name,
        "reason": issue.risk.reason,
        "code": issue.code_snippet,
        "suggestions": [
            {"template": s.template_id, "params": s.param_dict(), "text": render_suggestion(s)}
            for s in issue.risk.suggestions
        ],
    }


def output_json(result: 'ScanResult', file_path: str = None, min_level: str = 'LOW'):
    issues = filter_issues(result.aggregator.issues, min_level)
    by_level = defaultdict(int)
    for issue in issues:
        by_level[issue.risk.level.name] += 1
    data = {
        "scan_date": datetime.now().isoformat(),
        "scanner": f"decimalguard v{__version__}",
        "files_scanned": result.files_scanned,
        "skipped_files": [{"file": fp, "error": msg} for fp, msg in result.skipped_files],
        "cancelled": result.cancelled,
        "total_issues": len(issues),
        "issues": [issue_to_dict(i) for i in issues],
        "summary": {
            "by_level": {name: by_level[name] for name in LEVEL_NAMES if by_level.get(name)},
        },
        "remediation": GENERAL_REMEDIATION,
    }
    json_str = json.dumps(data, indent=2)
    if file_path:
        with open(file_path, 'w', encoding='utf-8') as f:
            f.write(json_str)
    else:
        print(json_str)


# ============================================================================
# Scan Orchestration & File Discovery
# ============================================================================

@dataclass
class ScanResult:
    aggregator: IssueAggregator = field(default_factory=IssueAggregator)
    files_scanned: int = 0
    skipped_files: List[Tuple[str, str]] = field(default_factory=list)
    elapsed: float = 0.0
    cancelled: bool = False


def discover_files(root: str, config: DecimalGuardConfig) -> List[str]:
    """Enumerate matching source files under root in a stable order.

    Exclusions are matched against paths relative to root.
    """
    files = []
    for dirpath, dirs, filenames in os.walk(root):
        rel_dir = os.path.relpath(dirpath, root)
        rel_dir = '' if rel_dir == '.' else rel_dir
        dirs[:] = sorted(d for d in dirs if not config.should_exclude(os.path.join(rel_dir, d)))
        for fname in sorted(filenames):
            if config.matches_file(fname) and not config.should_exclude(os.path.join(rel_dir, fname)):
                files.append(os.path.join(dirpath, fname))
    return files


def read_file(file_path: str) -> Optional[str]:
    for encoding in ['utf-8', 'latin-1']:
        try:
            with open(file_path, 'r', encoding=encoding) as f:
                return f.read()
        except UnicodeDecodeError:
            continue
        except OSError:
            return None
    return None


def _scan_one(file_path: str, config: DecimalGuardConfig, result: ScanResult):
    content = read_file(file_path)
    if content is None:
        err_console.print(f"[yellow]Warning: cannot read {escape(file_path)}, skipping[/yellow]")
        result.skipped_files.append((file_path, "unreadable"))
        return
    try:
        file_issues = analyze_source(content, file_path, config)
    except ParseFailure as e:
        err_console.print(f"[bold red]Error parsing {escape(file_path)}:[/bold red] {escape(str(e))}")
        result.skipped_files.append((file_path, str(e)))
        return
    except Exception as e:
        reason = f"{type(e).__name__}: {e}"
        err_console.print(f"[bold red]Error analyzing {escape(file_path)}:[/bold red] {escape(reason)}")
        result.skipped_files.append((file_path, reason))
        return
    # Merge only once the whole file is done so a cancelled run stays consistent
    result.aggregator.merge(file_issues)
    result.files_scanned += 1


def scan_path(target: str, config: Optional[DecimalGuardConfig] = None,
              show_progress: bool = True,
              should_cancel: Optional[Callable[[], bool]] = None) -> ScanResult:
    """Scan a file or directory.

    Files are analyzed one at a time. `should_cancel` is polled between files;
    a cancelled scan (or Ctrl-C) keeps the results of completed files.
    """
    config = config or DecimalGuardConfig()
    target_path = Path(target)
    if target_path.is_file():
        files = [str(target_path)]
    elif target_path.is_dir():
        files = discover_files(str(target_path), config)
    else:
        raise ConfigurationError(f"scan root does not exist: {target}")

    result = ScanResult()
    start = time.time()

    def run(advance: Callable[[], None]):
        try:
            for fp in files:
                if should_cancel is not None and should_cancel():
                    result.cancelled = True
                    break
                _scan_one(fp, config, result)
                advance()
        except KeyboardInterrupt:
            result.cancelled = True

    if show_progress and files:
        with Progress(
            SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
            BarColumn(), MofNCompleteColumn(), console=console
        ) as progress:
            task = progress.add_task("[cyan]Scanning files...", total=len(files))
            run(lambda: progress.advance(task))
    else:
        run(lambda: None)

    result.elapsed = time.time() - start
    return result


# ============================================================================
# Main
# ============================================================================

def _split_names(values: Optional[List[str]]) -> Optional[FrozenSet[str]]:
    if not values:
        return None
    return frozenset(n.strip() for v in values for n in v.split(',') if n.strip())


def apply_cli_overrides(config: DecimalGuardConfig, args: argparse.Namespace) -> DecimalGuardConfig:
    """Layer command-line options over the loaded config."""
    changes = {}
    watched = _split_names(args.watch)
    if watched is not None:
        changes['watched_functions'] = watched
    safe = _split_names(args.safe)
    if safe is not None:
        changes['safe_conversion_functions'] = safe
    if args.include:
        changes['file_globs'] = tuple(args.include)
    if args.exclude:
        changes['exclude_globs'] = list(config.exclude_globs) + list(args.exclude)
    if args.fail_on_high:
        changes['fail_on_high'] = True
    if args.min_level:
        changes['min_level'] = args.min_level
    return replace(config, **changes).validate()


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description='decimalguard - find decimal math calls whose arguments may be undefined'
    )
    parser.add_argument('target', nargs='?', help='File or directory to scan (default: source_root, "src")')
    parser.add_argument('--config', help='Path to .decimalguard.yml config file')
    parser.add_argument('--watch', action='append', metavar='NAMES',
                        help='Comma-separated watched function names (replaces the default set)')
    parser.add_argument('--safe', action='append', metavar='NAMES',
                        help='Comma-separated safe conversion function names (replaces the default set)')
    parser.add_argument('--include', action='append', metavar='GLOB',
                        help='File name glob to scan (repeatable; replaces the default globs)')
    parser.add_argument('--exclude', action='append', metavar='GLOB',
                        help='Path or directory glob to skip (repeatable)')
    parser.add_argument('--output', choices=['text', 'json'], default='text', help='Output format')
    parser.add_argument('-o', '--output-file', help='Save report to file')
    parser.add_argument('--min-level', choices=list(LEVEL_NAMES), help='Minimum risk level to report')
    parser.add_argument('--fail-on-high', action='store_true',
                        help='Exit with status 1 when HIGH risk issues are found')
    parser.add_argument('--no-banner', action='store_true', help='Suppress banner')
    parser.add_argument('--no-progress', action='store_true', help='Suppress progress bar')

    args = parser.parse_args(argv)
    is_json = args.output == 'json'

    try:
        config = load_config(args.target or os.getcwd(), args.config) or DecimalGuardConfig()
        config = apply_cli_overrides(config, args)
        target = args.target or config.source_root
        if not os.path.exists(target):
            raise ConfigurationError(f"scan root does not exist: {target}")
    except ConfigurationError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        sys.exit(2)

    if not args.no_banner and not is_json:
        _print_banner()

    result = scan_path(target, config, show_progress=not (is_json or args.no_progress))

    if result.cancelled:
        err_console.print(
            f"[yellow]Scan interrupted; reporting results for {result.files_scanned} completed file(s)[/yellow]"
        )

    if is_json:
        output_json(result, args.output_file, config.min_level)
    else:
        output_rich(result, target, config.min_level)
        if args.output_file:
            output_text_plain(result, args.output_file, config.min_level)
            console.print(f"\n[bold green]Report saved to {escape(args.output_file)}[/bold green]")

    sys.exit(1 if config.fail_on_high and result.aggregator.has_high() else 0)


if __name__ == '__main__':
    main()
