# copilot/base_utils.py

import logging
import re


logger = logging.getLogger("copilot_completion")


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            text = f"\033[{color_code}m{text}\033[0m"
        logger.info(str(text))
        return False

    def preview(self, text: str, limit: int = 60) -> str:
        """Single-line, bounded rendering of user code for log lines."""
        text = (text or "").replace("\n", "\\n")
        if len(text) <= limit:
            return text
        return text[:limit] + "..."

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.

        It works differently from the standard "format" method: only the keys passed in kwargs are
        replaced, every other {brace} run (code, JSON, templates) is left untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result
