"""
Domain layer for mail forwarding business logic.

This layer contains:
- Data models (rules, matchers, parsed and rewritten messages)
- Alias resolution (recipients to forwarding targets)
- Header rewriting and body filtering
- The forwarding pipeline (explicit result and disposition handling)
"""
