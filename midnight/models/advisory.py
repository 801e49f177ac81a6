"""
Advisory Model
Pydantic model for one security advisory reported against a locked dependency.
"""
from typing import List
from pydantic import BaseModel


class Advisory(BaseModel):
    id: str
    package: str
    version: str = ""
    title: str = ""
    url: str = ""
    patched_versions: List[str] = []
