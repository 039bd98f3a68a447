"""
סכמות משותפות לכמה קבצי routes
"""
from pydantic import BaseModel


class DeleteResponse(BaseModel):
    """תגובת מחיקה"""
    deleted: bool = True
