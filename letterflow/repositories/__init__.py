"""Persistence layer"""
from letterflow.repositories.approval_queue import ApprovalQueue

__all__ = ["ApprovalQueue"]
