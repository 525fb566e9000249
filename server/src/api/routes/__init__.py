from . import (
	dashboard,
	health,
	updates,
)


__all__ = [
	"dashboard",
	"health",
	"updates",
]
