from typing import Dict, Any, Iterable, Sequence
from datetime import datetime
from decimal import Decimal
import json

import pandas as pd

from ..core.models import PricingCalculation, _jsonable
from ..core.steps import PricingStep, PricingStepType


STEP_COLUMNS = ['step', 'type', 'message', 'rule_name', 'matched', 'impact', 'timestamp']
RULE_COLUMNS = ['rule_id', 'name', 'rule_type', 'impact']
DISCOUNT_COLUMNS = ['rule_name', 'discount_type', 'amount', 'share_pct']
USAGE_COLUMNS = ['rule_id', 'name', 'rule_type', 'usage_count', 'total_impact', 'average_impact']


def _as_float(value: Any) -> Any:
    return float(value) if isinstance(value, Decimal) else value


class PricingReport:
    """Tabular views over calculations and their pricing steps"""

    def __init__(self):
        self.report_timestamp = datetime.now()

    def steps_frame(self, steps: Sequence[PricingStep]) -> pd.DataFrame:
        """One row per pricing step, in emission order"""
        rows = []
        for index, step in enumerate(steps, start=1):
            data = step.data
            rows.append({
                'step': index,
                'type': step.step_type.value,
                'message': step.message,
                'rule_name': getattr(data, 'rule_name', None),
                'matched': getattr(data, 'matched', None),
                'impact': _as_float(getattr(data, 'impact', None)),
                'timestamp': step.timestamp,
            })
        return pd.DataFrame(rows, columns=STEP_COLUMNS)

    def applied_rules_frame(self, calculation: PricingCalculation) -> pd.DataFrame:
        rows = [
            {
                'rule_id': rule.rule_id,
                'name': rule.name,
                'rule_type': rule.rule_type,
                'impact': float(rule.impact),
            }
            for rule in calculation.applied_rules
        ]
        return pd.DataFrame(rows, columns=RULE_COLUMNS)

    def discount_breakdown(self, calculation: PricingCalculation) -> pd.DataFrame:
        """Each discount with its share of the total discount"""
        frame = pd.DataFrame(
            [
                {
                    'rule_name': d.rule_name,
                    'discount_type': d.discount_type,
                    'amount': float(d.amount),
                }
                for d in calculation.discounts
            ],
            columns=['rule_name', 'discount_type', 'amount'],
        )
        total = frame['amount'].sum()
        frame['share_pct'] = frame['amount'] / total * 100 if total else 0.0
        return frame[DISCOUNT_COLUMNS]

    def rule_usage_stats(self, calculations: Iterable[PricingCalculation]) -> pd.DataFrame:
        """How often each rule was applied and its total impact across calculations"""
        rows = [
            {
                'rule_id': rule.rule_id,
                'name': rule.name,
                'rule_type': rule.rule_type,
                'impact': float(rule.impact),
            }
            for calculation in calculations
            for rule in calculation.applied_rules
        ]
        if not rows:
            return pd.DataFrame(columns=USAGE_COLUMNS)

        frame = pd.DataFrame(rows)
        stats = (frame.groupby(['rule_id', 'name', 'rule_type'], as_index=False)
                 .agg(usage_count=('impact', 'size'), total_impact=('impact', 'sum')))
        stats['average_impact'] = stats['total_impact'] / stats['usage_count']
        return stats.sort_values(['usage_count', 'total_impact'], ascending=False) \
            .reset_index(drop=True)[USAGE_COLUMNS]

    def summarize(self, calculation: PricingCalculation,
                  steps: Sequence[PricingStep] = ()) -> Dict[str, Any]:
        """Summary section plus the full breakdown"""
        bundle = calculation.selected_bundle
        unused = [s for s in steps if s.step_type == PricingStepType.UNUSED_DAYS_CALCULATION]
        return {
            'summary': {
                'bundle': bundle.name,
                'country': bundle.country_id,
                'requested_duration': bundle.requested_duration,
                'bundle_duration': bundle.duration,
                'final_price': calculation.final_price,
                'profit': calculation.profit,
                'rules_applied': len(calculation.applied_rules),
                'steps': len(steps),
                'unused_days_applied': bool(unused) and unused[0].data.applied,
                'report_generated': self.report_timestamp.isoformat(),
            },
            'calculation': calculation.to_dict(),
        }

    def export_report(self, report: Dict[str, Any], format: str = 'json') -> str:
        """Export report in specified format"""
        if format == 'json':
            return json.dumps(_jsonable(report), indent=2, default=str)
        elif format == 'markdown':
            return self._generate_markdown_report(report)
        else:
            raise ValueError(f"Unsupported format: {format}")

    def _generate_markdown_report(self, report: Dict[str, Any]) -> str:
        md_lines = []

        summary = report['summary']
        md_lines.append("# eSIM Pricing - Calculation Report")
        md_lines.append(f"\nGenerated: {summary['report_generated']}")
        md_lines.append("\n## Summary")
        for key, value in summary.items():
            if key != 'report_generated':
                md_lines.append(f"- **{key}**: {value}")

        md_lines.append("\n## Breakdown")
        md_lines.append(self._dict_to_markdown(report['calculation']))

        return '\n'.join(md_lines)

    def _dict_to_markdown(self, data: Any, level: int = 0) -> str:
        """Convert dictionary to markdown format"""
        lines = []
        indent = '  ' * level

        if isinstance(data, dict):
            for key, value in data.items():
                if isinstance(value, dict):
                    lines.append(f"\n{indent}**{key}**:")
                    lines.append(self._dict_to_markdown(value, level + 1))
                elif isinstance(value, list):
                    lines.append(f"\n{indent}**{key}**:")
                    for item in value:
                        lines.append(f"{indent}- {item}")
                else:
                    lines.append(f"{indent}- **{key}**: {value}")
        else:
            lines.append(f"{indent}{data}")

        return '\n'.join(lines)
