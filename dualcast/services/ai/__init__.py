"""
AI Services Package

Text generation for publish metadata:
- Provider interface and registry (OpenAI, Anthropic, Gemini, OpenRouter, Llama)
- Field prompt templates
- Per-field metadata generation with retry
"""
