"""
calcplan - validation, repair and verification of LLM damage-calc plans

A deterministic pipeline that turns an LLM-proposed showcase plan for one
character into a calc.js module a damage-calculation engine can load:
- Plan validation with a restricted expression language and safety checks
- Heuristic repair passes for known classes of LLM mistakes
- Script rendering
- Sandboxed runtime verification against synthetic inputs
"""

__version__ = "0.1.0"
