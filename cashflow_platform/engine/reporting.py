"""
Cashflow Reporting
==================

This module converts engine output into analyst-friendly pandas tables.
:class:`ReportGenerator` takes a projected cashflow schedule and, optionally,
the waterfall results for the same periods and produces:

- a period-by-period cashflow report,
- a waterfall report with one column per payee, account and trigger,
- a scenario-set table with one column per named vector.

Example
-------
>>> from cashflow_platform.engine.reporting import ReportGenerator
>>> reporter = ReportGenerator(cashflows, waterfall_results)
>>> df = reporter.generate_cashflow_report()
>>> print(df[["Period", "BeginBalance", "Principal", "Interest"]].head())

See Also
--------
collateral.CashflowResult : Projected schedule used as input.
waterfall.WaterfallResult : Per-period waterfall allocations.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .collateral import CashflowResult
from .waterfall import WaterfallResult

logger = logging.getLogger("CFP.Reporting")


class ReportGenerator:
    """
    Build tabular reports from a projection run.

    Parameters
    ----------
    cashflows : CashflowResult, optional
        Projected schedule.
    waterfall : sequence of WaterfallResult, optional
        Waterfall results in period order.
    """

    def __init__(
        self,
        cashflows: Optional[CashflowResult] = None,
        waterfall: Optional[Sequence[WaterfallResult]] = None,
    ) -> None:
        self.cashflows = cashflows
        self.waterfall = list(waterfall or [])

    def generate_cashflow_report(self) -> pd.DataFrame:
        """
        Period-by-period cashflow table.

        Returns
        -------
        pd.DataFrame
            Columns ``Period``, ``PaymentDate``, ``BeginBalance``,
            ``SchedPrincipal``, ``Prepayment``, ``Principal``, ``Default``,
            ``Loss``, ``GrossInterest``, ``Interest``, ``InterestShortfall``,
            ``AccumShortfall``, ``Recovery``, ``EndBalance`` and the
            cumulative ``CumLoss``. Empty when there are no periods.
        """
        if self.cashflows is None or not self.cashflows.periods:
            logger.warning("No cashflow periods found. Returning empty DataFrame.")
            return pd.DataFrame()

        rows: List[Dict[str, Any]] = []
        for p in self.cashflows.periods:
            rows.append(
                {
                    "Period": p.period,
                    "PaymentDate": p.payment_date.isoformat(),
                    "BeginBalance": p.beginning_balance,
                    "SchedPrincipal": p.scheduled_principal,
                    "Prepayment": p.prepayments,
                    "Principal": p.principal_paid,
                    "Default": p.default_amount,
                    "Loss": p.losses,
                    "GrossInterest": p.gross_interest,
                    "Interest": p.interest_collected,
                    "InterestShortfall": p.interest_shortfall,
                    "AccumShortfall": p.accumulated_shortfall,
                    "Recovery": p.recoveries,
                    "EndBalance": p.ending_balance,
                }
            )
        df = pd.DataFrame(rows)
        df["CumLoss"] = df["Loss"].cumsum()
        return df

    def generate_waterfall_report(self) -> pd.DataFrame:
        """
        Waterfall allocations, one row per period.

        Columns are ``Period``, ``Paid.<recipient>`` per payee,
        ``Account.<name>.Balance`` per account, ``Trigger.<name>`` per
        trigger, ``TotalPaid`` and ``Unallocated``.
        """
        if not self.waterfall:
            logger.warning("No waterfall results found. Returning empty DataFrame.")
            return pd.DataFrame()

        rows: List[Dict[str, Any]] = []
        for result in self.waterfall:
            row: Dict[str, Any] = {"Period": result.period}
            for recipient, amount in result.recipient_totals.items():
                row[f"Paid.{recipient}"] = amount
            for name, balance in result.ending_balances.items():
                row[f"Account.{name}.Balance"] = balance
            for name, active in result.triggers_state.items():
                row[f"Trigger.{name}"] = active
            row["TotalPaid"] = result.total_paid
            row["Unallocated"] = result.unallocated_funds
            rows.append(row)

        df = pd.DataFrame(rows)
        paid_cols = [c for c in df.columns if c.startswith("Paid.")]
        df[paid_cols] = df[paid_cols].fillna(0.0)
        return df

    @staticmethod
    def generate_scenario_report(vectors: Mapping[str, Sequence[float]]) -> pd.DataFrame:
        """Scenario vectors side by side, indexed by 0-based ``Period``."""
        if not vectors:
            return pd.DataFrame()
        df = pd.DataFrame({name: list(values) for name, values in vectors.items()})
        df.insert(0, "Period", range(len(df)))
        return df

    def summary(self) -> Dict[str, float]:
        """Headline totals for the cashflow schedule and waterfall."""
        summary: Dict[str, float] = {}
        if self.cashflows is not None:
            summary.update(
                {
                    "periods": float(len(self.cashflows.periods)),
                    "total_principal": self.cashflows.total_principal,
                    "total_interest": self.cashflows.total_interest,
                    "total_losses": self.cashflows.total_losses,
                    "total_recoveries": self.cashflows.total_recoveries,
                    "wal": self.cashflows.metrics.wal,
                }
            )
        if self.waterfall:
            summary["total_paid"] = sum(r.total_paid for r in self.waterfall)
            summary["ending_unallocated"] = self.waterfall[-1].unallocated_funds
        return summary

    def save_to_csv(self, df: pd.DataFrame, filename: str) -> None:
        """Write a report to CSV (UTF-8, no index)."""
        try:
            df.to_csv(filename, index=False)
        except OSError as e:
            logger.error(f"Failed to save CSV to {filename}: {e}")
            raise
        logger.info(f"Report saved to {filename}")
