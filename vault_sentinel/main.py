#!/usr/bin/env python3
"""
Vault sentinel
Entry point for the monitoring application: python -m vault_sentinel.main COMMAND
"""
from .cli import main

if __name__ == "__main__":
    main()
