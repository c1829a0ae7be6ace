"""
Text generation layer.

Modules:
- text_client: TextClient (OpenAI chat completions) and extract_json
"""
