"""Recipe aggregation: which files, directories, and references form the unit."""

from hotswap.recipe.aggregator import RecipeAggregator
from hotswap.recipe.bundle import DirectoryBundle
from hotswap.recipe.classifier import ClassifierMode, FileCategory, SourceClassifier
from hotswap.recipe.source import DirectoryRecipeSource, RecipeEntry, RecipeSource

__all__ = [
    "ClassifierMode",
    "DirectoryBundle",
    "DirectoryRecipeSource",
    "FileCategory",
    "RecipeAggregator",
    "RecipeEntry",
    "RecipeSource",
    "SourceClassifier",
]
