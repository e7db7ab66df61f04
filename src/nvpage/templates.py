"""Lua snippets sent verbatim to the host

Nothing here talks to the host; these functions only build source text.
Snippets that emit notifications embed the session id and the channel id
so the host-side glue addresses this invocation only.
"""

from dataclasses import dataclass
from textwrap import dedent
from typing import Optional

from nvpage.config import SplitOptions
from nvpage.notifications import BUFFER_CLOSED, REQUEST_CHUNK

# Argument for `sleep` so the terminal job never ends on its own
SLEEP_FOREVER = "2147483647d"

INSTANCE_VAR = "page_instance"

REPLACE_CURRENT = "local buf = vim.api.nvim_get_current_buf()"

SWITCH_NEW = dedent("""\
    local buf = vim.api.nvim_create_buf(true, false)
    vim.api.nvim_set_current_buf(buf)""")


def quote(value: str) -> str:
    """Lua string literal for value"""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def long_string(value: str) -> str:
    """Lua long bracket literal, for user supplied commands"""
    level = 4
    while f"]{'=' * level}]" in value:
        level += 1
    eq = "=" * level
    return f"[{eq}[{value}]{eq}]"


def create_buffer(window_open: str) -> str:
    """Open a terminal buffer backed by a sleeping job

    The shell is swapped for ``sleep`` while the terminal is opened, so the
    buffer gets a PTY without running anything. Returns ``{ buf, chan }``.
    """
    return dedent("""\
        local shell, shellcmdflag = vim.o.shell, vim.o.shellcmdflag
        vim.o.shell, vim.o.shellcmdflag = 'sleep', ''
        {window_open}
        local ok, chan = pcall(vim.api.nvim_call_function, 'termopen', {{ '{sleep}' }})
        vim.o.shell, vim.o.shellcmdflag = shell, shellcmdflag
        if not ok then
            error(chan)
        end
        return {{ buf, chan }}
        """).format(window_open=window_open, sleep=SLEEP_FOREVER)


def _ratio(axis: str, n: int) -> str:
    return f"math.floor((({axis} / 2) * 3) / {n + 1})"


def split(opts: SplitOptions) -> str:
    """Window opener for a split or, with popup, a floating window"""
    if opts.popup:
        return _popup(opts)

    above, below = "aboveleft", "belowright"
    if opts.right:
        direction, size, cmd, fix = below, _concat(_ratio("w", opts.right)), "vsplit", "winfixwidth"
    elif opts.left:
        direction, size, cmd, fix = above, _concat(_ratio("w", opts.left)), "vsplit", "winfixwidth"
    elif opts.below:
        direction, size, cmd, fix = below, _concat(_ratio("h", opts.below)), "split", "winfixheight"
    elif opts.above:
        direction, size, cmd, fix = above, _concat(_ratio("h", opts.above)), "split", "winfixheight"
    elif opts.right_cols is not None:
        direction, size, cmd, fix = below, str(opts.right_cols), "vsplit", "winfixwidth"
    elif opts.left_cols is not None:
        direction, size, cmd, fix = above, str(opts.left_cols), "vsplit", "winfixwidth"
    elif opts.below_rows is not None:
        direction, size, cmd, fix = below, str(opts.below_rows), "split", "winfixheight"
    elif opts.above_rows is not None:
        direction, size, cmd, fix = above, str(opts.above_rows), "split", "winfixheight"
    else:
        raise ValueError("No split requested")

    return dedent("""\
        local prev_win = vim.api.nvim_get_current_win()
        local w = vim.api.nvim_win_get_width(prev_win)
        local h = vim.api.nvim_win_get_height(prev_win)
        vim.cmd('{direction} {size}{cmd}')
        local win = vim.api.nvim_get_current_win()
        local buf = vim.api.nvim_create_buf(true, false)
        vim.api.nvim_set_current_buf(buf)
        vim.api.nvim_win_set_option(win, '{fix}', true)""").format(
        direction=direction, size=size, cmd=cmd, fix=fix,
    )


def _concat(expr: str) -> str:
    # Splice a Lua expression into a single-quoted command string
    return f"' .. tostring({expr}) .. '"


def _popup(opts: SplitOptions) -> str:
    if opts.right:
        width, height, row, col = _ratio("w", opts.right), "h", "0", "w"
    elif opts.left:
        width, height, row, col = _ratio("w", opts.left), "h", "0", "0"
    elif opts.below:
        width, height, row, col = "w", _ratio("h", opts.below), "h", "0"
    elif opts.above:
        width, height, row, col = "w", _ratio("h", opts.above), "0", "0"
    elif opts.right_cols is not None:
        width, height, row, col = str(opts.right_cols), "h", "0", "w"
    elif opts.left_cols is not None:
        width, height, row, col = str(opts.left_cols), "h", "0", "0"
    elif opts.below_rows is not None:
        width, height, row, col = "w", str(opts.below_rows), "h", "0"
    elif opts.above_rows is not None:
        width, height, row, col = "w", str(opts.above_rows), "0", "0"
    else:
        raise ValueError("No split requested")

    return dedent("""\
        local w = vim.api.nvim_win_get_width(0)
        local h = vim.api.nvim_win_get_height(0)
        local buf = vim.api.nvim_create_buf(true, false)
        local win = vim.api.nvim_open_win(buf, true, {{
            relative = 'editor',
            width = {width},
            height = {height},
            row = {row},
            col = {col}
        }})
        vim.api.nvim_set_current_win(win)
        vim.api.nvim_win_set_option(win, 'winblend', 25)""").format(
        width=width, height=height, row=row, col=col,
    )


# =============================================================================
# Output buffer setup
# =============================================================================

READ_ONLY_MAPS = dedent("""\
    vim.bo.modifiable = false

    _G.page_echo_notification = function(message)
        vim.defer_fn(function()
            local msg = '-- [PAGE] ' .. message .. ' --'
            vim.api.nvim_echo({ { msg, 'Comment' }, }, false, {})
            vim.cmd 'au CursorMoved <buffer> ++once echo'
        end, 64)
    end

    _G.page_bound = function(top, message, move)
        local row, col, search
        if top then
            row, col, search = 1, 1, { '\\\\S', 'c' }
        else
            row, col, search = 9999999999, 9999999999, { '\\\\S', 'bc' }
        end
        vim.api.nvim_call_function('cursor', { row, col })
        vim.api.nvim_call_function('search', search)
        if move ~= nil then move() end
        _G.page_echo_notification(message)
    end

    _G.page_scroll = function(top, message)
        vim.wo.scrolloff = 0
        local move
        if top then
            local key = vim.api.nvim_replace_termcodes('z<CR>M', true, false, true)
            move = function() vim.api.nvim_feedkeys(key, 'nx', true) end
        else
            move = function() vim.api.nvim_feedkeys('z-M', 'nx', false) end
        end
        _G.page_bound(top, message, move)
        vim.wo.scrolloff = 999
    end

    _G.page_close = function()
        local buf = vim.api.nvim_get_current_buf()
        if buf ~= vim.b.page_alternate_bufnr and
            vim.api.nvim_buf_is_loaded(vim.b.page_alternate_bufnr)
        then
            vim.api.nvim_set_current_buf(vim.b.page_alternate_bufnr)
        end
        vim.api.nvim_buf_delete(buf, { force = true })
        local exit = true
        for _, b in ipairs(vim.api.nvim_list_bufs()) do
            local bt = vim.api.nvim_buf_get_option(b, 'buftype')
            if bt == '' or bt == 'acwrite' or bt == 'terminal' or bt == 'prompt' then
                if vim.api.nvim_buf_get_option(b, 'modified') then
                    exit = false
                    break
                end
                local bl = vim.api.nvim_buf_get_lines(b, 0, -1, false)
                if #bl > 1 and bl[1] ~= '' then
                    exit = false
                    break
                end
            end
        end
        if exit then
            vim.cmd 'qa!'
        end
    end

    local function page_map(key, expr)
        vim.api.nvim_buf_set_keymap(0, '', key, expr, { nowait = true })
    end
    page_map('I', '<CMD>lua _G.page_scroll(true, "in the beginning of scroll")<CR>')
    page_map('A', '<CMD>lua _G.page_scroll(false, "at the end of scroll")<CR>')
    page_map('i', '<CMD>lua _G.page_bound(true, "in the beginning")<CR>')
    page_map('a', '<CMD>lua _G.page_bound(false, "at the end")<CR>')
    page_map('q', '<CMD>lua _G.page_close()<CR>')
    page_map('u', '<C-u>')
    page_map('d', '<C-d>')
    page_map('x', 'G')""")


@dataclass
class OutputCommands:
    """Pieces of the setup snippet run on a freshly opened buffer"""
    filetype: str = ""
    edit: str = ""
    notify_closed: str = ""
    pre: str = ""
    provided_by_user: str = ""
    after: str = ""

    def render(self, initial_buf_nr: int) -> str:
        parts = [
            f"vim.b.page_alternate_bufnr = {initial_buf_nr}",
            dedent("""\
                if vim.wo.scrolloff > 999 or vim.wo.scrolloff < 0 then
                    vim.g.page_scrolloff_backup = 0
                else
                    vim.g.page_scrolloff_backup = vim.wo.scrolloff
                end
                vim.bo.scrollback, vim.wo.scrolloff, vim.wo.signcolumn, vim.wo.number =
                    100000, 999, 'no', false"""),
            self.filetype,
            self.edit,
            dedent("""\
                vim.api.nvim_create_autocmd('BufEnter', {
                    buffer = 0,
                    callback = function() vim.wo.scrolloff = 999 end
                })
                vim.api.nvim_create_autocmd('BufLeave', {
                    buffer = 0,
                    callback = function() vim.wo.scrolloff = vim.g.page_scrolloff_backup end
                })"""),
            self.notify_closed,
            self.pre,
            "vim.cmd 'silent doautocmd User PageOpen | redraw'",
            self.provided_by_user,
            self.after,
        ]
        return "\n".join(p for p in parts if p) + "\n"


def _base_commands(command: Optional[str], lua: Optional[str], writable: bool) -> OutputCommands:
    user = []
    if command:
        user.append(f"vim.cmd {long_string(command)}")
    if lua:
        user.append(lua)
    return OutputCommands(
        edit="" if writable else READ_ONLY_MAPS,
        provided_by_user="\n".join(user),
    )


def file_commands(command: Optional[str], lua: Optional[str], writable: bool) -> OutputCommands:
    """Setup for a buffer showing an opened file"""
    cmds = _base_commands(command, lua, writable)
    cmds.after = "vim.cmd 'silent doautocmd User PageOpenFile'"
    return cmds


def output_commands(
    session_id: str,
    channel: int,
    query_lines: int,
    filetype: str,
    command: Optional[str] = None,
    lua: Optional[str] = None,
    writable: bool = False,
    pwd: Optional[str] = None,
) -> OutputCommands:
    """Setup for the output buffer

    Always notifies ``buffer-closed`` when the buffer is deleted. With
    query_lines set, adds the ``:Page [count]`` command (and ``r``/``R``
    maps unless writable) emitting ``request-chunk``.
    """
    cmds = _base_commands(command, lua, writable)
    cmds.filetype = f"vim.bo.filetype = {quote(filetype)}"

    cmds.notify_closed = dedent("""\
        local closed = 'rpcnotify({channel}, "{event}", "{session_id}")'
        vim.api.nvim_create_autocmd('BufDelete', {{
            buffer = 0,
            command = 'silent! call ' .. closed
        }})""").format(channel=channel, event=BUFFER_CLOSED, session_id=session_id)

    pre = []
    if query_lines:
        pre.append(dedent("""\
            vim.b.page_query_size = {query_lines}
            local def_args = '{channel}, "{event}", "{session_id}", '
            local def = 'command! -nargs=? Page call rpcnotify(' .. def_args .. '<args>)'
            vim.cmd(def)
            vim.api.nvim_create_autocmd('BufEnter', {{
                buffer = 0,
                command = def,
            }})""").format(
            query_lines=query_lines, channel=channel, event=REQUEST_CHUNK, session_id=session_id,
        ))
        if not writable:
            pre.append(dedent("""\
                page_map('r', '<CMD>call rpcnotify(' .. def_args .. 'b:page_query_size * v:count1)<CR>')
                page_map('R', '<CMD>call rpcnotify(' .. def_args .. '99999)<CR>')"""))

    if pwd:
        cd = f"lcd {pwd}"
        pre.append(dedent("""\
            vim.b.page_lcd_backup = vim.fn.getcwd()
            vim.cmd {cd}
            vim.api.nvim_create_autocmd('BufEnter', {{
                buffer = 0,
                command = {cd}
            }})
            vim.api.nvim_create_autocmd('BufLeave', {{
                buffer = 0,
                command = 'exe "lcd" . b:page_lcd_backup'
            }})""").format(cd=quote(cd)))

    cmds.pre = "\n".join(pre)
    return cmds


# =============================================================================
# Status line messages
# =============================================================================


def query_finished(lines_sent: int) -> str:
    return dedent("""\
        vim.cmd 'redraw'
        local msg = '-- [PAGE] {n} lines read; has more --'
        vim.api.nvim_echo({{ {{ msg, 'Comment' }}, }}, false, {{}})
        """).format(n=lines_sent)


END_OF_INPUT = dedent("""\
    vim.cmd 'redraw'
    local msg = '-- [PAGE] end of input --'
    vim.api.nvim_echo({ { msg, 'Comment' }, }, false, {})
    """)
