"""
Tool handlers package.

Re-exports the public names so callers can import from
`llmcoders.tool_handlers` directly.
"""

# _state: constants, mutable state, utilities
from llmcoders.tool_handlers._state import (
    MAX_FILE_SIZE,
    MAX_SEARCH_RESULTS,
    SANDBOX_ROOT,
    _require_args_dict,
    get_root,
    normalize_args,
)

# _path: path validation
from llmcoders.tool_handlers._path import (
    PathRejected,
    _is_path_within_sandbox,
    _validate_path,
    resolve_path,
)

# read_handlers
from llmcoders.tool_handlers.read_handlers import read_file_text, read_text_file

# write_handlers
from llmcoders.tool_handlers.write_handlers import (
    atomic_write,
    create_directory,
    move_file,
    write_file,
)

# search_handlers
from llmcoders.tool_handlers.search_handlers import compile_glob, list_directory, search_files

# edit_handlers
from llmcoders.tool_handlers.edit_handlers import (
    detect_eol,
    edit_text_file,
    edit_text_file_by_range,
    find_literal_spans,
    range_edit_offsets,
)

# schema
from llmcoders.tool_handlers.schema import (
    CONFIG_TOOL_PARAMETERS,
    HANDLERS,
    TOOL_DEFS,
    TOOL_ORDER,
    BuiltinTool,
    ConfigTool,
    ExternalTool,
    ToolDefinition,
    build_tools,
    builtin_tools,
    make_openai_tools,
    params_to_schema,
)
