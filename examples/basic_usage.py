"""
Basic usage example for the NutriSafe clinical safety engine.

Runs the reference scenarios against the packaged knowledge base and prints
each verdict, then traces one flagged item back to its source records.
"""

from rich.console import Console

from nutrisafe import SafetyEngine, SafetyQuery
from nutrisafe.evaluation.report import render_verdict
from nutrisafe.logging import configure_logging

console = Console()


def build_queries() -> list[SafetyQuery]:
    """Example queries covering interactions, allergens and guidelines."""
    raw = [
        {
            "query_id": "warfarin-kale",
            "profile": {"medications": ["Coumadin 5 mg"], "conditions": [], "allergies": []},
            "items": [{"item_id": "salad", "name": "Kale salad", "ingredients": ["kale", "olive oil", "lemon juice"]}],
        },
        {
            "query_id": "maoi-cheese",
            "profile": {"medications": ["phenelzine"], "conditions": [], "allergies": []},
            "items": [{"name": "aged cheddar"}],
        },
        {
            "query_id": "peanut-cookies",
            "profile": {
                "medications": [],
                "conditions": [],
                "allergies": [{"allergen": "peanuts", "severity": "severe"}],
            },
            "items": [
                {
                    "item_id": "cookies",
                    "name": "Chocolate chip cookies",
                    "ingredients": ["flour", "butter", "sugar", "chocolate chips", "egg"],
                    "may_contain": ["tree nuts"],
                }
            ],
        },
        {
            "query_id": "hypertension-soup",
            "profile": {
                "age": 54,
                "medications": [],
                "conditions": ["hypertension_stage_1"],
                "allergies": [],
                "nutrient_limits": {"sodium": 1500},
            },
            "items": [{"item_id": "soup", "name": "Canned soup", "ingredients": ["chicken", "salt"], "nutrients": {"sodium": 1820}}],
        },
        {
            "query_id": "unknown-medication",
            "profile": {"medications": ["Tylenol"], "conditions": [], "allergies": []},
            "items": [{"name": "apple"}],
        },
    ]
    return [SafetyQuery.model_validate(q) for q in raw]


def main() -> None:
    configure_logging(level="WARNING")
    engine = SafetyEngine.from_settings()
    console.print(f"[bold]Knowledge base[/] {engine.kb_version}\n")

    verdicts = engine.evaluate_many(build_queries())
    for verdict in verdicts:
        console.rule(verdict.query_id or "")
        render_verdict(verdict, console)

    console.rule("Trace: salad")
    for step in verdicts[0].trace("salad"):
        console.print(f"{step['rule_id']} v{step['record_version']} ({step['evidence_level']}): {step['citation']}")


if __name__ == "__main__":
    main()
