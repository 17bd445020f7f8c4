"""Settings library for sync and authentication configurations.

Provides:
    - Schema validation and enforcement for settings.json structure.
    - Loading, saving, reverting, and managing application settings.
    - Validation of the Google OAuth client_secret.json.
    - Application paths for configuration, credentials, and the local database.
"""

import json
import logging
import pathlib
import shutil
from typing import Dict, Any, Optional, List

from PySide6 import QtCore, QtWidgets

from ..status import status

app_name: str = 'GiftList'

REMOTE_KEYS: List[str] = ['document_name', 'worksheet']
SYNC_KEYS: List[str] = ['debounce_ms', 'remote_timeout', 'auth_timeout', 'demo_delay_ms']

SETTINGS_SCHEMA: Dict[str, Any] = {
    'remote': {
        'type': dict,
        'required': True,
        'item_schema': {
            'document_name': {'type': str, 'required': True, 'non_empty': True},
            'worksheet': {'type': str, 'required': True, 'non_empty': True},
        }
    },
    'sync': {
        'type': dict,
        'required': True,
        'item_schema': {
            'debounce_ms': {'type': int, 'required': True, 'min': 0},
            'remote_timeout': {'type': int, 'required': True, 'min': 1},
            'auth_timeout': {'type': int, 'required': True, 'min': 1},
            'demo_delay_ms': {'type': int, 'required': True, 'min': 0},
        }
    },
}

KEY_SECTIONS: Dict[str, str] = {
    **{k: 'remote' for k in REMOTE_KEYS},
    **{k: 'sync' for k in SYNC_KEYS},
}


def _validate_section(section_name: str, section: Any, item_schema: Dict[str, Any]) -> None:
    """Validate one section of the settings against its item schema.

    Args:
        section_name: Name of the section, used in error messages.
        section: The section data.
        item_schema: Dict describing required fields, types, and value constraints.

    Raises:
        TypeError: If the section is not a dict or a field has the wrong type.
        ValueError: If a required field is missing or fails a value constraint.
    """
    logging.debug(f'Validating "{section_name}" section.')
    if not isinstance(section, dict):
        msg: str = f'"{section_name}" must be a dict.'
        logging.error(msg)
        raise TypeError(msg)

    for field, field_specs in item_schema.items():
        if field_specs['required'] and field not in section:
            msg = f'"{section_name}" missing "{field}".'
            logging.error(msg)
            raise ValueError(msg)
        if field not in section:
            continue

        value = section[field]
        _type = field_specs['type']
        # bool is an int subclass but never a valid number of milliseconds
        if not isinstance(value, _type) or (_type is int and isinstance(value, bool)):
            msg = f'"{section_name}" field "{field}" must be {_type}, got {type(value)}.'
            logging.error(msg)
            raise TypeError(msg)

        if field_specs.get('non_empty') and not value.strip():
            msg = f'"{section_name}" field "{field}" must not be empty.'
            logging.error(msg)
            raise ValueError(msg)

        if 'min' in field_specs and value < field_specs['min']:
            msg = f'"{section_name}" field "{field}" must be >= {field_specs["min"]}, got {value}.'
            logging.error(msg)
            raise ValueError(msg)


class ConfigPaths:
    """Manage application file paths and ensure default templates and directories exist.

    Initializes paths for configuration templates, credentials, and the local database,
    and copies the default configuration files into the user data directory.
    """

    def __init__(self) -> None:
        QtWidgets.QApplication.setApplicationName(app_name)
        QtWidgets.QApplication.setOrganizationName('')
        logging.debug(f'Setting application name: {app_name}')

        # Get the app data directory
        p = QtCore.QStandardPaths.writableLocation(QtCore.QStandardPaths.AppDataLocation)
        app_data_dir = pathlib.Path(p)
        logging.debug(f'Using app data directory: {app_data_dir}')

        self.template_dir: pathlib.Path = pathlib.Path(__file__).parent.parent / 'config'
        self.client_secret_template: pathlib.Path = self.template_dir / 'client_secret.json.template'
        self.settings_template: pathlib.Path = self.template_dir / 'settings.json.template'

        self.config_dir: pathlib.Path = app_data_dir / 'config'
        self.auth_dir: pathlib.Path = self.config_dir / 'auth'
        self.db_dir: pathlib.Path = self.config_dir / 'db'

        # Config files
        self.client_secret_path: pathlib.Path = self.config_dir / 'client_secret.json'
        self.settings_path: pathlib.Path = self.config_dir / 'settings.json'
        self.creds_path: pathlib.Path = self.auth_dir / 'creds.json'
        self.db_path: pathlib.Path = self.db_dir / 'store.db'

        self._verify_and_prepare()

    def _verify_and_prepare(self) -> None:
        """Verify templates exist and prepare configuration directories and files.

        Raises:
            FileNotFoundError: If required template directory or file is missing.
        """
        logging.debug(f'Verifying required directories and templates in {self.template_dir}')
        if not self.template_dir.exists():
            msg: str = f'Missing template directory: {self.template_dir}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.client_secret_template.exists():
            msg = f'Missing client_secret template: {self.client_secret_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)
        if not self.settings_template.exists():
            msg = f'Missing settings template: {self.settings_template}'
            logging.error(msg)
            raise FileNotFoundError(msg)

        for directory in (self.config_dir, self.auth_dir, self.db_dir):
            if not directory.exists():
                logging.debug(f'Creating directory: {directory}')
                directory.mkdir(parents=True, exist_ok=True)

        # Ensure valid configs exist even if we haven't yet set them up
        if not self.client_secret_path.exists():
            logging.debug(f'Copying default client_secret from template to {self.client_secret_path}')
            shutil.copy(self.client_secret_template, self.client_secret_path)
        if not self.settings_path.exists():
            logging.debug(f'Copying default settings from template to {self.settings_path}')
            shutil.copy(self.settings_template, self.settings_path)

    def revert_settings_to_template(self) -> None:
        """Restore settings.json from the default template file."""
        logging.debug(f'Reverting settings to template: {self.settings_template}')
        shutil.copy(self.settings_template, self.settings_path)

    def revert_client_secret_to_template(self) -> None:
        """Restore client_secret.json from the default template file."""
        logging.debug(f'Reverting client_secret to template: {self.client_secret_template}')
        shutil.copy(self.client_secret_template, self.client_secret_path)


class SettingsAPI(ConfigPaths):
    """
    Provides an interface to get/set/revert/save settings.json sections and client_secret.json.
    """
    required_client_secret_keys: List[str] = ['client_id', 'project_id', 'client_secret', 'auth_uri', 'token_uri']

    def __init__(self, settings_path: Optional[str] = None, client_secret_path: Optional[str] = None) -> None:
        """Initialize SettingsAPI and load settings and client_secret data.

        Args:
            settings_path: Optional path to a custom settings.json file.
            client_secret_path: Optional path to a custom client_secret.json file.
        """
        super().__init__()

        self.settings_path: pathlib.Path = pathlib.Path(settings_path) if settings_path else self.settings_path
        self.client_secret_path: pathlib.Path = (
            pathlib.Path(client_secret_path)
            if client_secret_path
            else self.client_secret_path
        )

        self.settings_data: Dict[str, Any] = {k: {} for k in SETTINGS_SCHEMA}
        self.client_secret_data: Dict[str, Any] = {}

        self.init_data()

    def __getitem__(self, key: str) -> Any:
        """Retrieve a remote or sync value using dictionary-style access.

        Raises:
            KeyError: If key is not a known remote or sync key.
        """
        if key not in KEY_SECTIONS:
            raise KeyError(f'Invalid settings key: {key}, must be one of {list(KEY_SECTIONS)}')
        section = KEY_SECTIONS[key]
        v = self.settings_data.get(section, {}).get(key)

        _type = SETTINGS_SCHEMA[section]['item_schema'][key]['type']
        if not isinstance(v, _type):
            logging.error(f'Settings key "{key}" is not of type {_type}, got {type(v)}.')
            return None
        return v

    def __setitem__(self, key: str, value: Any) -> None:
        """Assign a remote or sync value and persist its section.

        Raises:
            KeyError: If key is not a known remote or sync key.
            TypeError, ValueError: If the value fails validation.
        """
        if key not in KEY_SECTIONS:
            raise KeyError(f'Invalid settings key: {key}, must be one of {list(KEY_SECTIONS)}')
        section = KEY_SECTIONS[key]
        data = dict(self.settings_data[section])
        data[key] = value
        self.set_section(section, data)

    @QtCore.Slot()
    def init_data(self) -> None:
        """Reload settings and client_secret data, emitting change signals."""
        self.load_settings()
        try:
            self.load_client_secret()
        except status.ClientSecretInvalidException:
            # The app stays usable offline without a client secret
            self.client_secret_data = {}

        from ..ui.actions import signals
        signals.configSectionChanged.emit('client_secret')
        for section in SETTINGS_SCHEMA:
            signals.configSectionChanged.emit(section)

    def load_settings(self) -> Dict[str, Any]:
        """Load settings.json from disk and validate against schema.

        Raises:
            status.SettingsNotFoundException: If settings.json file is missing.
            status.SettingsInvalidException: If JSON parsing or validation fails.
        """
        logging.debug(f'Loading settings from "{self.settings_path}"')
        if not self.settings_path.exists():
            raise status.SettingsNotFoundException

        try:
            with self.settings_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
            self.validate_settings_data(data)
        except (ValueError, TypeError, RuntimeError) as ex:
            raise status.SettingsInvalidException(str(ex)) from ex

        self.settings_data = data
        return self.settings_data

    def load_client_secret(self) -> Dict[str, Any]:
        """Load client_secret.json from disk and validate required OAuth fields.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json file is missing.
            status.ClientSecretInvalidException: If JSON parsing or required fields are missing.
        """
        logging.debug(f'Loading client_secret from "{self.client_secret_path}"')
        if not self.client_secret_path.exists():
            raise status.ClientSecretNotFoundException
        try:
            with self.client_secret_path.open('r', encoding='utf-8') as f:
                data: Dict[str, Any] = json.load(f)
        except (ValueError, json.JSONDecodeError) as ex:
            raise status.ClientSecretInvalidException(str(ex)) from ex

        self.validate_client_secret(data)
        self.client_secret_data = data
        return self.client_secret_data

    def validate_client_secret(self, data=None) -> str:
        """Validate that the client configuration contains required OAuth credentials.

        Args:
            data (dict, optional): Client secret data to validate. Defaults to loaded client_secret_data.

        Returns:
            str: Section key used ('installed' or 'web').

        Raises:
            status.ClientSecretInvalidException: If no valid section exists or required fields are missing.
        """
        if data is None:
            data = self.client_secret_data

        key = next((k for k in ('installed', 'web') if k in data), None)
        if not key:
            raise status.ClientSecretInvalidException('Missing "installed" or "web" section in client_secret.')

        logging.debug(f'Found "{key}" section in client_secret.')

        config_section: Dict[str, Any] = data[key]
        missing: List[str] = [k for k in self.required_client_secret_keys if k not in config_section]
        if missing:
            raise status.ClientSecretInvalidException(
                f'Missing required fields in the \'{key}\' section: {missing}.'
            )
        return key

    def is_client_secret_configured(self) -> bool:
        """Return True when the client secret holds a non-empty client id and secret."""
        try:
            key = self.validate_client_secret()
        except status.ClientSecretInvalidException:
            return False
        section = self.client_secret_data[key]
        return bool(section.get('client_id')) and bool(section.get('client_secret'))

    def validate_settings_data(self, data: Dict[str, Any] = None) -> None:
        """Validate settings data against SETTINGS_SCHEMA.

        Raises:
            RuntimeError: If data is empty.
            ValueError, TypeError: If a section is missing or fails validation.
        """
        if data is None:
            data = self.settings_data
        if not data:
            raise RuntimeError('Settings data is empty.')

        logging.debug('Validating settings data against schema.')
        for field, specs in SETTINGS_SCHEMA.items():
            if specs.get('required') and field not in data:
                msg: str = f'Missing required section: {field}'
                logging.error(msg)
                raise ValueError(msg)
            if field not in data:
                continue
            _validate_section(field, data[field], specs['item_schema'])

        logging.debug('Settings data is valid.')

    def get_section(self, section_name: str) -> Dict[str, Any]:
        """Retrieve a copy of configuration data for a settings or client_secret section.

        Raises:
            KeyError: If section_name is unknown.
        """
        if section_name == 'client_secret':
            return self.client_secret_data.copy()

        return self.settings_data[section_name].copy()

    def set_section(self, section_name: str, new_data: Dict[str, Any]) -> None:
        """Replace and persist a configuration section.

        Raises:
            ValueError: If section_name is unrecognized or the data fails validation.
            TypeError: If the data has the wrong types.
        """
        from ..ui.actions import signals

        if section_name == 'client_secret':
            logging.debug('Setting entire client_secret data.')
            self.validate_client_secret(new_data)
            self.client_secret_data = new_data
            self.save_section('client_secret')
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for set: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        _validate_section(section_name, new_data, SETTINGS_SCHEMA[section_name]['item_schema'])
        self.settings_data[section_name] = new_data
        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def reload_section(self, section_name: str) -> None:
        """Reload a configuration section from its source file and emit change signal.

        Raises:
            ValueError: If section_name is unrecognized.
        """
        from ..ui.actions import signals

        if section_name == 'client_secret':
            logging.debug('Reloading client_secret from disk.')
            self.load_client_secret()
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for reload: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        logging.debug(f'Reloading section "{section_name}" from disk.')
        with self.settings_path.open('r', encoding='utf-8') as f:
            data: Dict[str, Any] = json.load(f)
        self.validate_settings_data(data=data)
        self.settings_data[section_name] = data[section_name]
        signals.configSectionChanged.emit(section_name)

    def revert_section(self, section_name: str) -> None:
        """Revert a configuration section to its template default and save.

        Raises:
            ValueError: If section_name is invalid.
        """
        from ..ui.actions import signals

        if section_name == 'client_secret':
            logging.debug('Reverting client_secret to template.')
            self.revert_client_secret_to_template()
            self.load_client_secret()
            signals.configSectionChanged.emit(section_name)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for revert: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_template.open('r', encoding='utf-8') as f:
            template_data: Dict[str, Any] = json.load(f)

        self.settings_data[section_name] = template_data[section_name]
        self.save_section(section_name)
        signals.configSectionChanged.emit(section_name)

    def save_section(self, section_name: str) -> None:
        """Persist a single configuration section to its corresponding file.

        Raises:
            ValueError: If section_name is not recognized.
        """
        if section_name == 'client_secret':
            logging.debug(f'Saving client_secret to "{self.client_secret_path}"')
            self.validate_client_secret(self.client_secret_data)
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)
            return

        if section_name not in SETTINGS_SCHEMA:
            msg: str = f'Unknown section_name for save: "{section_name}"'
            logging.error(msg)
            raise ValueError(msg)

        with self.settings_path.open('r', encoding='utf-8') as f:
            original_data: Dict[str, Any] = json.load(f)

        new_data: Dict[str, Any] = original_data.copy()
        new_data[section_name] = self.settings_data[section_name]

        with self.settings_path.open('w', encoding='utf-8') as f:
            json.dump(new_data, f, indent=4, ensure_ascii=False)

    def save_all(self) -> None:
        """Save settings.json and client_secret.json, with rollback on failure.

        Raises:
            ValueError, TypeError: On settings validation failure.
        """
        logging.debug('Saving all settings.')
        original_settings_data: Dict[str, Any] = dict(self.settings_data)
        try:
            self.validate_settings_data()
            with self.settings_path.open('w', encoding='utf-8') as f:
                json.dump(self.settings_data, f, indent=4, ensure_ascii=False)
        except (ValueError, TypeError) as e:
            logging.error(f'Failed to save settings: {e}. Rolling back.')
            self.settings_data = original_settings_data
            raise

        if self.client_secret_data:
            self.validate_client_secret(self.client_secret_data)
            with self.client_secret_path.open('w', encoding='utf-8') as f:
                json.dump(self.client_secret_data, f, indent=4, ensure_ascii=False)


settings: SettingsAPI = SettingsAPI()
