"""TouchTrial: home-trial smartphone storefront backend."""

__version__ = "0.1.0"
