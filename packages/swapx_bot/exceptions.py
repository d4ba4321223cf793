"""
SwapX Bot - Exceptions

Chain-level errors live in `swapx_bot.chain`.
"""


class SwapXBotError(Exception):
    """Erreur de base du bot"""
    pass


class ConfigurationError(SwapXBotError):
    """Configuration invalide, la stratégie refuse de démarrer"""
    pass


class GridConfigError(ConfigurationError):
    """Paramètres de grille invalides"""
    pass


class AlreadyRunningError(SwapXBotError):
    """start() appelé sur une stratégie déjà active"""
    pass


class BotNotFoundError(SwapXBotError):
    """Bot introuvable"""
    pass


class BotRunningError(SwapXBotError):
    """Opération interdite pendant que le bot tourne"""
    pass
