"""
Run hopterm with: python -m hopterm
"""

from .cli import main

if __name__ == "__main__":
    main()
