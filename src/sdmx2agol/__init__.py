"""sdmx2agol: publish SDMX statistical data to ArcGIS Online as hosted feature services."""

__version__ = "0.1.0"
