from .mirror import NotionMirror

NotionMirror.cli()
