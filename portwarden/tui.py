import curses

from .config import CONFIG, debug_log
from .events import (Activate, Cancel, Confirm, KillSelected, Modifier, NavigateDelta,
                     Query, SelectAll, ShowDetails, Submit)
from .inventory import PsutilInventory
from .models import ChangeState
from .session import SessionController

CP_HEADER = 1   # Headers, branding
CP_ACCENT = 2   # Cursor row, key hints
CP_TEXT = 3     # Normal body text
CP_WARN = 4     # Errors, protected rows, pending confirmation
CP_NEW = 5      # Entries that just appeared

KEY_ESC = 27
KEY_CTRL_A = 1
KEY_CTRL_D = 4
KEY_CTRL_K = 11
KEY_CTRL_T = 20
KEY_CTRL_X = 24
ENTER_KEYS = (10, 13)
BACKSPACE_KEYS = (8, 127)

HELP_LINES = [
    "Type to search by port, process name or PID.",
    "Enter        run the query as a command, or kill the typed port",
    "Up/Down      move    Shift+Up/Down  extend selection",
    "Ctrl-T       toggle row    Ctrl-A  select all",
    "Del/Ctrl-X   kill row (press twice)    Ctrl-K  kill selection (twice)",
    "Ctrl-D       process details    Esc  cancel / close / quit",
    "",
    "Commands: kill <port>, r(efresh), c(lear), admin|sudo,",
    "          settings|config, help|?, export [json|csv]",
]


def init_colors():
    try:
        curses.start_color()
        curses.use_default_colors()
        curses.init_pair(CP_HEADER, curses.COLOR_CYAN, -1)
        curses.init_pair(CP_ACCENT, curses.COLOR_YELLOW, -1)
        curses.init_pair(CP_TEXT, curses.COLOR_WHITE, -1)
        curses.init_pair(CP_WARN, curses.COLOR_RED, -1)
        curses.init_pair(CP_NEW, curses.COLOR_GREEN, -1)
    except curses.error:
        pass


def _put(win, y, x, text, attr=0):
    h, w = win.getmaxyx()
    if y < 0 or y >= h or x >= w - 1:
        return
    try:
        win.addstr(y, x, text[:max(0, w - x - 1)], attr)
    except curses.error:
        pass


def format_row(entry, width):
    proto = entry.protocol[:4]
    name = entry.process_name[:24]
    row = f" {entry.port:>5}  {proto:<4}  {entry.pid:>7}  {name:<24}  {entry.local_address}"
    if entry.is_protected:
        row += "  [protected]"
    return row[:width].ljust(width)


def row_marker(identity, view):
    if identity in view.killing:
        return "~"
    pending = view.pending_confirmation
    if pending is not None and pending.token == identity:
        return "!"
    if view.change_states.get(identity) is ChangeState.NEW:
        return "+"
    if identity in view.selection:
        return "*"
    return " "


def draw_screen(stdscr, view, config=None):
    stdscr.erase()
    h, w = stdscr.getmaxyx()

    badge = "admin" if view.is_privileged else "user (type 'admin' to elevate)"
    title = f" portwarden  {len(view.ranked_entries)} listening  [{badge}]"
    _put(stdscr, 0, 0, title, curses.color_pair(CP_HEADER) | curses.A_BOLD)
    _put(stdscr, 1, 0, f" > {view.query}", curses.color_pair(CP_ACCENT))

    header = " {:>5}  {:<4}  {:>7}  {:<24}  {}".format("PORT", "PROT", "PID", "PROCESS", "ADDRESS")
    _put(stdscr, 2, 1, header, curses.color_pair(CP_HEADER) | curses.A_BOLD)

    table_h = max(1, h - 6)
    offset = 0
    if view.cursor >= table_h:
        offset = view.cursor - table_h + 1

    if view.loading:
        _put(stdscr, 3, 2, "Loading...", curses.color_pair(CP_TEXT) | curses.A_DIM)
    elif not view.ranked_entries:
        msg = "No matching ports found" if view.query else "No listening ports detected"
        _put(stdscr, 3, 2, msg, curses.color_pair(CP_TEXT) | curses.A_DIM)

    for i, entry in enumerate(view.ranked_entries[offset:offset + table_h]):
        idx = offset + i
        ident = entry.identity
        if idx == view.cursor:
            attr = curses.color_pair(CP_ACCENT) | curses.A_REVERSE
        elif entry.is_protected:
            attr = curses.color_pair(CP_WARN) | curses.A_DIM
        elif view.change_states.get(ident) is ChangeState.NEW:
            attr = curses.color_pair(CP_NEW) | curses.A_BOLD
        else:
            attr = curses.color_pair(CP_TEXT)
        _put(stdscr, 3 + i, 0, row_marker(ident, view), attr)
        _put(stdscr, 3 + i, 1, format_row(entry, w - 2), attr)

    if view.removed_entries:
        gone = ", ".join(f":{e.port}" for e in view.removed_entries[:6])
        _put(stdscr, h - 3, 1, f"closed: {gone}", curses.color_pair(CP_WARN) | curses.A_DIM)

    if view.error:
        _put(stdscr, h - 2, 1, f"! {view.error}", curses.color_pair(CP_WARN) | curses.A_BOLD)
    elif view.notice is not None:
        color = CP_WARN if view.notice.level == "error" else CP_NEW if view.notice.level == "success" else CP_ACCENT
        _put(stdscr, h - 2, 1, view.notice.message, curses.color_pair(color) | curses.A_BOLD)

    hint = " Enter:run  Del:kill  ^K:kill sel  ^T:toggle  ^A:all  ^D:details  ?+Enter:help  Esc:back"
    if view.selection:
        hint = f" {len(view.selection)} selected |" + hint
    _put(stdscr, h - 1, 0, hint, curses.color_pair(CP_TEXT) | curses.A_DIM)

    if view.panel == "help":
        draw_box(stdscr, " Help ", HELP_LINES)
    elif view.panel == "settings":
        lines = [f"{k}: {v}" for k, v in sorted((config or CONFIG).items()) if k != "common_ports"]
        lines.append("")
        lines.append("Edit ~/.config/portwarden/config.json to change these.")
        draw_box(stdscr, " Settings ", lines)
    elif view.details is not None:
        d = view.details
        mem = f"{d.memory_bytes / (1024 * 1024):.1f} MB" if d.memory_bytes else "N/A"
        lines = [
            f"PID:      {d.pid}",
            f"Process:  {d.name}",
            f"Path:     {d.path or '-'}",
            f"Memory:   {mem}",
            f"CPU:      {d.cpu_percent:.1f}%",
            f"Children: {len(d.children)} processes",
        ]
        draw_box(stdscr, " Process Details ", lines)

    stdscr.noutrefresh()
    curses.doupdate()


def draw_box(stdscr, title, lines):
    h, w = stdscr.getmaxyx()
    bw = min(w - 4, max(len(l) for l in lines) + 4)
    bh = min(h - 2, len(lines) + 2)
    if bw < 10 or bh < 3:
        return
    win = curses.newwin(bh, bw, (h - bh) // 2, (w - bw) // 2)
    win.erase()
    win.box()
    _put(win, 0, 2, title, curses.color_pair(CP_HEADER) | curses.A_BOLD)
    for i, line in enumerate(lines[:bh - 2]):
        _put(win, 1 + i, 2, line, curses.color_pair(CP_TEXT))
    win.noutrefresh()


def key_to_event(k, controller):
    """Translate one key code into an input event (None when the key is ignored)."""
    query = controller.query
    if k == -1:
        return None
    if k in ENTER_KEYS or k == curses.KEY_ENTER:
        return Submit(query)
    if k == KEY_ESC:
        return Cancel()
    if k == curses.KEY_UP:
        return NavigateDelta(-1)
    if k == curses.KEY_DOWN:
        return NavigateDelta(1)
    if k == curses.KEY_SR:
        return NavigateDelta(-1, extend=True)
    if k == curses.KEY_SF:
        return NavigateDelta(1, extend=True)
    if k == KEY_CTRL_A:
        return SelectAll()
    if k == KEY_CTRL_K:
        return KillSelected()
    if k == KEY_CTRL_D:
        return ShowDetails()
    if k in (curses.KEY_DC, KEY_CTRL_X):
        return Confirm()
    if k == KEY_CTRL_T:
        current = controller.selection.current()
        if current is None:
            return None
        return Activate(current, controller.selection.cursor, Modifier.TOGGLE)
    if k in BACKSPACE_KEYS or k == curses.KEY_BACKSPACE:
        return Query(query[:-1])
    if 32 <= k <= 126:
        return Query(query + chr(k))
    return None


def handle_key(controller, k):
    """Apply a key; returns False when the front end should exit."""
    event = key_to_event(k, controller)
    if event is None:
        return True
    result = controller.dispatch(event)
    if isinstance(event, Cancel) and result is None:
        return False
    return True


def main(stdscr, args=None, controller=None):
    curses.curs_set(0)
    stdscr.keypad(True)
    # short timeout so timers and poll results are applied while idle
    stdscr.timeout(120)
    init_colors()

    controller = controller or SessionController(PsutilInventory())
    if args is not None:
        if getattr(args, "query", ""):
            controller.on_query(args.query)
        elif getattr(args, "port", None):
            controller.on_query(str(args.port))

    controller.start()
    try:
        while True:
            controller.pump()
            view = controller.view()
            if view.quit_requested:
                debug_log("MAIN: Exiting for elevated restart")
                break
            draw_screen(stdscr, view, controller.config)
            k = stdscr.getch()
            if not handle_key(controller, k):
                break
    except KeyboardInterrupt:
        pass
    finally:
        controller.shutdown()
