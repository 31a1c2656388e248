"""Service layer: image generation, asset storage, catalog, posters and export."""
