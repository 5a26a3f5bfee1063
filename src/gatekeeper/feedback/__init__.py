"""Outcome ledger and ledger-driven weight tuning."""

from gatekeeper.feedback.ledger import FeedbackLedger, LedgerEntry
from gatekeeper.feedback.tuner import WeightProposal, WeightTuner

__all__ = ["FeedbackLedger", "LedgerEntry", "WeightProposal", "WeightTuner"]
