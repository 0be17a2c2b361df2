"""
Configuration utilities for FondCAS.

Provides configuration loading, defaults and validation for the
normalization, matching, estimation and ranking components.
"""

import copy
import logging
import yaml
from typing import Dict, Any
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/fondcas.yaml"


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from YAML file merged over the defaults.
    
    Args:
        config_path: Path to configuration file
        
    Returns:
        Configuration dictionary
    """
    defaults = get_default_config()
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.warning(f"Configuration file {config_path} not found, using defaults")
            return defaults
        
        with open(config_file, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
        
        if not isinstance(config, dict):
            logger.error(f"Configuration file {config_path} is not a mapping, using defaults")
            return defaults
        
        logger.info(f"Loaded configuration from {config_path}")
        return merge_configs(defaults, config)
        
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load configuration from {config_path}: {e}")
        return defaults


def get_default_config() -> Dict[str, Any]:
    """
    Get default configuration.
    
    Returns:
        Default configuration dictionary
    """
    return {
        "normalization": {
            "name": {
                "legal_forms": {
                    "sc": [r"s ?c"],
                    "srl": [r"s ?r ?l(?: ?d)?"],
                    "sa": [r"s ?a"],
                    "snc": [r"s ?n ?c"],
                    "pfa": [r"p ?f ?a"],
                },
                "strip_prefixes": ["sc"],
                "strip_suffixes": ["srl", "sa", "snc", "pfa"],
            },
            "address": {
                "street_types": {
                    "bd": ["bulevardul", "bulevard", "bdul", "b-dul", "b dul", "blvd"],
                    "str": ["strada", "str"],
                    "sos": ["soseaua", "sos"],
                    "cal": ["calea", "cal"],
                    "al": ["aleea", "al"],
                    "prel": ["prelungirea", "prel"],
                    "intr": ["intrarea", "intr"],
                    "pta": ["piata", "pta"],
                    "spl": ["splaiul", "spl"],
                    "nr": ["numarul", "numar", "nr"],
                    "sect": ["sectorul", "sector", "sect"],
                },
                "stop_words": ["str", "bd", "cal", "sos", "nr", "sect", "prel", "al",
                               "intr", "pta", "spl", "bucuresti", "mun", "jud"],
                "unit_markers": ["bl", "sc", "ap", "et", "cam", "cod", "cp"],
                "separator": "-",
                "sector_prefix": "s",
            },
            "specialty": {
                "mapping_file": "config/specialty_variants.csv",
                "variants": {},
                "categories": {},
                "default_category": "clinical",
                "suggestion_min_score": 80,
            },
            "contact": {
                "default_region": "RO",
            },
        },
        "matching": {
            "key_separator": "|",
        },
        "estimator": {
            "window_hours": 48,
            "decay": "linear",
            "decay_tau_hours": 12.0,
            "available_ratio_threshold": 0.15,
            "pull_margin": 1.0,
            "pull_dominance_ratio": 2.0,
            "allocation_confidence": 0.8,
            "elapsed_confidence_min": 0.3,
            "elapsed_confidence_max": 0.6,
            "no_allocation_confidence": 0.1,
            "reports_only_confidence_max": 0.3,
            "per_report_confidence": 0.05,
            "max_report_confidence": 0.15,
            "max_confidence": 0.95,
        },
        "ranker": {
            "min_query_length": 2,
            "max_results": 8,
            "typo_min_query_length": 3,
            "typo_prefix_length": 3,
        },
        "ingestion": {
            "header_scan_rows": 15,
            "specialty_separators": r"[,;/\n]",
        },
        "reports": {
            "max_comment_length": 500,
            "cooldown_minutes": 60,
        },
    }


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration.
    
    Args:
        config: Configuration dictionary
        
    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ["normalization", "matching", "estimator", "ranker"]
    
    for section in required_sections:
        if section not in config:
            logger.error(f"Missing required configuration section: {section}")
            return False
    
    normalization = config.get("normalization", {})
    for section in ["name", "address", "specialty"]:
        if section not in normalization:
            logger.error(f"Missing required configuration section: normalization.{section}")
            return False
    
    name_config = normalization.get("name", {})
    if not isinstance(name_config.get("legal_forms", {}), dict):
        logger.error("normalization.name.legal_forms must be a mapping")
        return False
    
    specialty_config = normalization.get("specialty", {})
    if not isinstance(specialty_config.get("variants", {}), dict):
        logger.error("normalization.specialty.variants must be a mapping")
        return False
    
    estimator = config.get("estimator", {})
    for key in ["available_ratio_threshold", "allocation_confidence",
                "elapsed_confidence_min", "elapsed_confidence_max",
                "no_allocation_confidence", "max_confidence"]:
        value = estimator.get(key, 0.5)
        if not isinstance(value, (int, float)) or not 0 <= value <= 1:
            logger.error(f"estimator.{key} must be a number between 0 and 1")
            return False
    
    if estimator.get("window_hours", 48) <= 0:
        logger.error("estimator.window_hours must be positive")
        return False
    
    if estimator.get("decay", "linear") not in ("linear", "exponential"):
        logger.error("estimator.decay must be 'linear' or 'exponential'")
        return False
    
    ranker = config.get("ranker", {})
    if ranker.get("max_results", 8) <= 0:
        logger.error("ranker.max_results must be positive")
        return False
    
    reports = config.get("reports", {})
    for key in ["max_comment_length", "cooldown_minutes"]:
        value = reports.get(key, 1)
        if not isinstance(value, (int, float)) or value < 0:
            logger.error(f"reports.{key} must be a non-negative number")
            return False
    
    logger.info("Configuration validation passed")
    return True


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two configuration dictionaries.
    
    Args:
        base_config: Base configuration
        override_config: Override configuration
        
    Returns:
        Merged configuration
    """
    merged = copy.deepcopy(base_config)
    
    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value
    
    return merged


def save_config(config: Dict[str, Any], config_path: str) -> bool:
    """
    Save configuration to YAML file.
    
    Args:
        config: Configuration dictionary
        config_path: Path to save configuration
        
    Returns:
        True if successful, False otherwise
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)
        
        with open(config_file, 'w', encoding='utf-8') as f:
            yaml.dump(config, f, default_flow_style=False, indent=2, allow_unicode=True)
        
        logger.info(f"Saved configuration to {config_path}")
        return True
        
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to save configuration to {config_path}: {e}")
        return False
