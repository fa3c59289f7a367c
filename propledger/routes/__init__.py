from .borrow import borrow_bp
from .rent import rent_bp
from .vault import vault_bp

blueprints = (borrow_bp, rent_bp, vault_bp)
