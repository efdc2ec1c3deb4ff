"""
Student schemas - request bodies for creating and updating students.

Students are stored as plain MongoDB documents in the ``students``
collection; these Pydantic models only describe what clients may send.
Every field is optional at the schema level so that missing fields are
reported by the service layer with the API's own 422/400 envelopes rather
than FastAPI's default validation response.
"""

from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field

# Business fields in the order they are stored and serialized
STUDENT_FIELDS = ("name", "age", "email", "phone", "address")


class StudentPayload(BaseModel):
    """Body of create and update requests. Unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = Field(None, description="Student's full name")
    age: Optional[Union[int, float]] = Field(None, description="Student's age")
    email: Optional[str] = Field(None, description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone number")
    address: Optional[str] = Field(None, description="Postal address")


class StudentCreate(StudentPayload):
    """Schema for POST requests; all five fields are required by the service."""


class StudentUpdate(StudentPayload):
    """Schema for PUT/PATCH requests; any subset of fields may be sent."""
