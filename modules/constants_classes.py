MCPAL_TAG = "#MCpal: "

CONFIG_FILENAME = "mcpal.toml"
ARGUMENTS_FILENAME = "mcpal_arguments.toml"
DEFAULT_CONFIG_FILENAME = "mcpal_default_config.toml"
SERVER_PROPERTIES_NAME = "server.properties"
SERVER_PROPERTIES_TEMPLATE_NAME = "server.properties.template"
BACKUP_RECORD_NAME = ".mcpal-backup.toml"

# Argument prefixes
BACKUP_PATH_PREFIX = "--backup-location"
BACKUP_PATH_DEFAULT_VALUE = "backup"
SERVER_PATH_PREFIX = "--server-location"
SERVER_PATH_DEFAULT_VALUE = ""
BEDROCK_SERVER_COMMANDS_PREFIX = "--bedrock-commands"

ENVIRONMENT_VARIABLE_CURRENT_BACKUP_DIR_PATH = "CURRENT_BACKUP_DIR_PATH"

# Console protocol
STOP_SENTINEL = "Stopping the server"
BACKUP_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Operator-facing messages
WORLD_DID_NOT_EXIST = (
    MCPAL_TAG + "The world didn't exist when MCpal was started. "
    "Start the server once so it can generate the world, or copy an existing "
    "world into the server directory."
)
EULA_NOT_FOUND = (
    MCPAL_TAG + "NO EULA FOUND!! The eula will be set to true automatically "
    "and the server restarted once."
)
EULA_STILL_REJECTED = (
    MCPAL_TAG + "The server still refuses to start because of the EULA after "
    "accepting it. Check the eula file in your server directory."
)
WORLD_STILL_MISSING = (
    MCPAL_TAG + "Gave up waiting for the world data to appear. Put your world "
    "into the server directory and start MCpal again."
)
INVALID_INPUT_PARAMETERS = (
    "Invalid Input Parameters. Please start MCpal like this:\n"
    "mcpal --backup-location=PATH_TO_BACKUP_FOLDER "
    "--server-location=PATH_TO_MINECRAFT_SERVER\n"
    'Example: mcpal --backup-location="/home/steve/minecraft_backups" '
    '--server-location="/home/steve/bedrock-server" --bedrock-commands="gamerule showcoordinates true"'
)
SERVER_FILE_NOT_FOUND = (
    "Couldn't find the Minecraft server file. "
    "Please check --server-location or set server_command in mcpal.toml."
)
SERVER_ALREADY_STOPPED = MCPAL_TAG + "Nothing to stop. Server is not active at the moment."
SERVER_ALREADY_RUNNING = (
    MCPAL_TAG + 'Server is already running, please stop it first using the "stop"-command'
)
