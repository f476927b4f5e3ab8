"""
Inference Services

Adapters for the external language models analysts may consult.

Services:
- model_provider: Provider interface and the OpenAI-compatible client
"""
