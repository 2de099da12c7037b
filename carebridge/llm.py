"""
LLM (Large Language Model) initialisation.
"""

import os
from typing import Optional

from langchain_openai import ChatOpenAI

from carebridge.config import MODEL_NAME


def init_llm() -> Optional[ChatOpenAI]:
    """Return the ChatOpenAI instance, or None when no API key is configured."""
    if not os.getenv("OPENAI_API_KEY"):
        print("[init] OPENAI_API_KEY not set; AI narrative disabled")
        return None
    llm = ChatOpenAI(model=MODEL_NAME, temperature=0)
    print(f"[init] Using LLM model: {MODEL_NAME}")
    return llm
