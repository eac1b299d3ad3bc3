"""Audit Logger for Price Calculations

Creates audit trails for every calculated price and for profit alerts.
"""

import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Any, Sequence
from pathlib import Path
import csv

from ..core.models import PricingContext, PricingCalculation, _jsonable
from ..core.steps import PricingStep


CALCULATION_COLUMNS = [
    'timestamp', 'log_id', 'bundle_id', 'bundle_group', 'country', 'duration',
    'requested_duration', 'unused_days', 'payment_method', 'base_cost', 'markup',
    'total_discount', 'processing_fee', 'final_price', 'profit', 'applied_rules',
]


class PricingAuditLogger:
    """Manages audit logging for price calculations"""

    def __init__(self, log_directory: str = "pricing_logs"):
        """Initialize audit logger with log directory"""
        self.log_directory = Path(log_directory)
        self.log_directory.mkdir(parents=True, exist_ok=True)

        self.calculations_dir = self.log_directory / "calculations"
        self.summaries_dir = self.log_directory / "summaries"
        self.alerts_dir = self.log_directory / "alerts"

        for dir_path in [self.calculations_dir, self.summaries_dir, self.alerts_dir]:
            dir_path.mkdir(exist_ok=True)

    def _daily_files(self, day: datetime):
        stamp = day.strftime("%Y-%m-%d")
        return (
            self.calculations_dir / f"calculations_{stamp}.jsonl",
            self.summaries_dir / f"summary_{stamp}.csv",
            self.alerts_dir / f"alerts_{stamp}.jsonl",
        )

    def log_calculation(self, context: PricingContext, calculation: PricingCalculation,
                        steps: Optional[Sequence[PricingStep]] = None) -> str:
        """Log a complete price calculation"""
        now = datetime.now()
        log_id = self._generate_log_id()
        bundle = calculation.selected_bundle

        log_entry = {
            'log_id': log_id,
            'timestamp': now.isoformat(),
            'version': '1.0',
            'request': {
                'requested_duration': context.requested_duration,
                'payment_method': context.payment_method,
                'pricing_date': context.current_date.isoformat(),
                'candidate_bundles': [b.id for b in context.bundles],
            },
            'calculation': calculation.to_dict(),
        }
        if steps is not None:
            log_entry['steps'] = [step.to_dict() for step in steps]

        decision_log, summary_log, _ = self._daily_files(now)
        with open(decision_log, 'a') as f:
            f.write(json.dumps(log_entry) + '\n')

        self._append_summary(summary_log, [
            now.isoformat(),
            log_id,
            bundle.id,
            bundle.group,
            bundle.country_id,
            bundle.duration,
            bundle.requested_duration,
            bundle.unused_days,
            context.payment_method,
            calculation.base_cost,
            calculation.markup,
            calculation.total_discount,
            calculation.processing_fee,
            calculation.final_price,
            calculation.profit,
            '|'.join(rule.name for rule in calculation.applied_rules),
        ])

        return log_id

    @staticmethod
    def _append_summary(summary_log: Path, row: List[Any]):
        is_new = not summary_log.exists()
        with open(summary_log, 'a', newline='') as f:
            writer = csv.writer(f)
            if is_new:
                writer.writerow(CALCULATION_COLUMNS)
            writer.writerow([str(v) if isinstance(v, Decimal) else v for v in row])

    def log_alert(self, alert_type: str, severity: str, details: Dict) -> str:
        """Log pricing alerts such as profit shortfalls"""
        alert_entry = {
            'alert_id': self._generate_log_id('ALERT'),
            'timestamp': datetime.now().isoformat(),
            'type': alert_type,
            'severity': severity,  # 'low', 'medium', 'high', 'critical'
            'details': _jsonable(details),
        }

        _, _, alert_log = self._daily_files(datetime.now())
        with open(alert_log, 'a') as f:
            f.write(json.dumps(alert_entry) + '\n')

        return alert_entry['alert_id']

    def _generate_log_id(self, prefix: str = 'CALC') -> str:
        """Generate unique log ID"""
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        return f"{prefix}_{timestamp}"

    def query_logs(self,
                   bundle_id: Optional[str] = None,
                   start_date: Optional[datetime] = None,
                   end_date: Optional[datetime] = None) -> List[Dict]:
        """Query historical price calculations"""
        results = []

        if not start_date:
            start_date = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
        if not end_date:
            end_date = datetime.now()

        current_date = start_date
        while current_date.date() <= end_date.date():
            log_file, _, _ = self._daily_files(current_date)

            if log_file.exists():
                with open(log_file, 'r') as f:
                    for line in f:
                        entry = json.loads(line)

                        if bundle_id and entry['calculation']['selected_bundle']['id'] != bundle_id:
                            continue

                        results.append(entry)

            current_date += timedelta(days=1)

        return results

    def generate_daily_report(self, date: Optional[datetime] = None) -> Dict:
        """Generate daily pricing activity report"""
        if not date:
            date = datetime.now()

        report_date = date.strftime("%Y-%m-%d")

        _, summary_file, alert_file = self._daily_files(date)
        if not summary_file.exists():
            return {'date': report_date, 'total_calculations': 0}

        with open(summary_file, 'r') as f:
            rows = list(csv.DictReader(f))

        total = len(rows)
        final_prices = [Decimal(r['final_price']) for r in rows]
        profits = [Decimal(r['profit']) for r in rows]

        by_country = {}
        by_payment_method = {}
        rule_counts = {}
        for row in rows:
            by_country[row['country']] = by_country.get(row['country'], 0) + 1
            method = row['payment_method']
            by_payment_method[method] = by_payment_method.get(method, 0) + 1
            for rule_name in filter(None, row['applied_rules'].split('|')):
                rule_counts[rule_name] = rule_counts.get(rule_name, 0) + 1

        alerts = 0
        if alert_file.exists():
            with open(alert_file, 'r') as f:
                alerts = sum(1 for line in f if line.strip())

        return {
            'date': report_date,
            'total_calculations': total,
            'average_final_price': str(sum(final_prices, Decimal('0')) / total) if total else '0',
            'total_profit': str(sum(profits, Decimal('0'))),
            'with_unused_days': sum(1 for r in rows if int(r['unused_days']) > 0),
            'by_country': by_country,
            'by_payment_method': by_payment_method,
            'by_rule': rule_counts,
            'alerts': alerts,
        }
