"""
Configuration Module - Import Pro
Reads config.ini (database location, sales rules, display settings)
"""

import os
import configparser
from typing import Optional


CONFIG_PATH = "config.ini"

DEFAULTS = {
    'DATABASE': {
        'path': ':memory:',
        'seed_demo': 'false',
    },
    'SALES': {
        'advance_rate': '0.30',
        'default_payment_method': 'Espèces',
    },
    'STOCK': {
        'prevent_oversell': 'true',
    },
    'DISPLAY': {
        'articles_per_page': '8',
        'clients_per_page': '10',
        'groupages_per_page': '6',
        'stock_per_page': '10',
    },
}


class Settings:
    """Application settings backed by config.ini"""

    def __init__(self, config_path: str = CONFIG_PATH):
        self.config_path = config_path
        self.cfg = configparser.ConfigParser()
        self.cfg.read_dict(DEFAULTS)

        if os.path.exists(config_path):
            try:
                self.cfg.read(config_path, encoding='utf-8')
            except configparser.Error as e:
                print(f"[Config] Could not read {config_path}: {e}")

    @property
    def database_path(self) -> str:
        candidate = self.cfg['DATABASE']['path'].strip()
        return candidate or ':memory:'

    @property
    def seed_demo(self) -> bool:
        return self.cfg.getboolean('DATABASE', 'seed_demo')

    @property
    def advance_rate(self) -> float:
        return self.cfg.getfloat('SALES', 'advance_rate')

    @property
    def default_payment_method(self) -> str:
        return self.cfg['SALES']['default_payment_method']

    @property
    def prevent_oversell(self) -> bool:
        return self.cfg.getboolean('STOCK', 'prevent_oversell')

    def per_page(self, listing: str) -> int:
        """Page size for a listing ('articles', 'clients', 'groupages', 'stock')"""
        return self.cfg.getint('DISPLAY', f"{listing}_per_page")

    def save(self, path: Optional[str] = None):
        with open(path or self.config_path, 'w', encoding='utf-8') as configfile:
            self.cfg.write(configfile)


# Global settings instance
_settings_instance: Optional[Settings] = None

def get_settings() -> Settings:
    """Get global settings instance"""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
