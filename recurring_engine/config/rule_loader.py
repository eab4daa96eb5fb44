"""
Categorization rule loader.
Loads CSV files containing text-matching rules for the rule engine.
"""

import csv
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..categorisation.rule_engine import Rule, RuleField, RuleOperator
from ..errors import ValidationError


_TRUE_VALUES = {"1", "true", "yes", "y"}


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def load_rules_csv(csv_path: str, owner_id: Optional[str] = None) -> List[Rule]:
    """
    Load categorization rules from a CSV file.

    Args:
        csv_path: Path to CSV file containing rules
        owner_id: Owner assigned to rows without an owner_id column

    Returns:
        List of Rule objects in file order (creation order)

    Example CSV format:
        rule_id,name,field,operator,value,category_id,priority,case_sensitive,enabled
        r1,Costco groceries,description,contains,Costco,groceries,10,false,true
        r2,Netflix,merchant,exact,NETFLIX,subscriptions,5,false,true
    """
    csv_file = Path(csv_path)
    if not csv_file.exists():
        raise FileNotFoundError(f"Rule file not found: {csv_path}")

    rules = []
    with open(csv_path, 'r', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        for line_no, row in enumerate(reader, start=2):
            rule_id = (row.get('rule_id') or '').strip()
            if not rule_id:
                continue

            try:
                field = RuleField.from_value(row.get('field', 'description'))
                operator = RuleOperator.from_value(row.get('operator', 'contains'))
                priority = int((row.get('priority') or '0').strip())
            except ValueError as e:
                raise ValidationError(f"{csv_path}:{line_no}: {e}") from e

            rules.append(Rule(
                id=rule_id,
                owner_id=(row.get('owner_id') or '').strip() or owner_id,
                name=(row.get('name') or rule_id).strip(),
                category_id=(row.get('category_id') or '').strip(),
                field=field,
                operator=operator,
                value=row.get('value') or '',
                case_sensitive=_parse_bool(row.get('case_sensitive'), False),
                priority=priority,
                is_enabled=_parse_bool(row.get('enabled'), True),
                created_seq=len(rules),
                created_at=datetime.now(),
            ))

    return rules
