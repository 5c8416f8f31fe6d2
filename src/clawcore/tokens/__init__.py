from clawcore.tokens.estimator import TokenEstimator

__all__ = ["TokenEstimator"]
