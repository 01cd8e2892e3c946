"""
Directory Hub
Blueprint registry.
"""

from directory_hub.blueprints.change_bp import change_bp
from directory_hub.blueprints.directory_bp import directory_bp
from directory_hub.blueprints.moderator_bp import moderator_bp
from directory_hub.blueprints.row_bp import row_bp

ALL_BLUEPRINTS = (directory_bp, row_bp, moderator_bp, change_bp)
