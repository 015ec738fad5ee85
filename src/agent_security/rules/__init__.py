"""Detection rule packs and their loader."""

from .rule_pack_manager import BUILTIN_PACKS_DIR, CompiledRule, Rule, RulePack, RulePackError, RulePackManager

__all__ = [
    "BUILTIN_PACKS_DIR",
    "CompiledRule",
    "Rule",
    "RulePack",
    "RulePackManager",
    "RulePackError",
]
