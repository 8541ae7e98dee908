"""catalog-merge — Join product and image sheets into one ERP-ready table."""

__version__ = "0.1.0"

IMAGE_FIELD = "IMAGENS"
"""Reserved output field holding the aggregated image URLs (always last)."""

IMAGE_SEPARATOR = ", "

OUTPUT_FILENAME = "produtos_processados.xlsx"
OUTPUT_SHEET = "Produtos_Processados"
