"""Services for completion scoring, crediting and referral matching"""
from .risk_signals import RiskSignalCollector, RiskSignals
from .fraud_detection_service import FraudScoreEngine, FraudAssessment, AlertSink, LoggingAlertSink
from .crediting_service import CreditingProtocol, CreditResult
from .completion_service import CompletionIntakeService
from .referral_service import ReferralCreditMatcher, ReferralCreditResult

__all__ = [
    'RiskSignalCollector',
    'RiskSignals',
    'FraudScoreEngine',
    'FraudAssessment',
    'AlertSink',
    'LoggingAlertSink',
    'CreditingProtocol',
    'CreditResult',
    'CompletionIntakeService',
    'ReferralCreditMatcher',
    'ReferralCreditResult',
]
