"""
Withdrawal Service Contracts

This module provides the contracts for withdrawal_service testing.
"""
