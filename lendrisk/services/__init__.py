"""Service modules"""
from .oracle_service import OracleService
from .smart_crank import SmartCrankResult, plan_oracle_crank

__all__ = ["OracleService", "SmartCrankResult", "plan_oracle_crank"]
