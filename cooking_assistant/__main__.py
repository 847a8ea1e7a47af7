"""
Entry point for running cooking-assistant as a module.

Usage: python -m cooking_assistant
"""

from cooking_assistant.cli import main

if __name__ == "__main__":
    main()
