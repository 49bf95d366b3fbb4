"""
Registrar Kernel

Controlled document numbering and protection engine:
- Collision-free, gap-free sequence allocation under row locks
- Declarative numbering patterns with never/yearly/monthly reset
- Document registry with lock/void/edit protection
- Append-only, hash-chained audit trail with compliance flags
"""

__version__ = "0.1.0"
