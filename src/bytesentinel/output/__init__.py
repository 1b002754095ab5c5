"""Output formatters for analysis results."""

from bytesentinel.output.console import print_identification, print_results
from bytesentinel.output.json_output import output_json

__all__ = ["print_results", "print_identification", "output_json"]
