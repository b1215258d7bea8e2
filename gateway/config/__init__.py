"""Gateway YAML configuration: schema, loader and builders."""
